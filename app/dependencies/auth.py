from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.security import decode_token
from app.models.doctor import Doctor
from app.models.user import User
from app.utils.errors import Unauthorized

security = HTTPBearer()

def get_current_user_from_token(
    token: str,
    db: Session,
):
    """
    Verify JWT token string (also used by WebSockets) and return the decoded
    payload with `user_id` resolved to an int.
    """
    payload = decode_token(token)

    if payload is None:
        raise Unauthorized("Invalid token")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise Unauthorized("Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise Unauthorized("User not found")

    return {
        **payload,
        "user_id": user_id,
        "user_type": user.user_type,
    }

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
):
    """Verify JWT token and return current user"""
    return get_current_user_from_token(credentials.credentials, db)

async def get_current_doctor(
    current_user = Depends(get_current_user),
):
    """Verify current user is a doctor"""
    if current_user.get("user_type") != "doctor":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only doctors can access this resource",
        )
    return current_user

async def get_current_admin(
    current_user = Depends(get_current_user),
):
    """Verify current user is an admin"""
    if current_user.get("user_type") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


async def get_current_patient(
    current_user = Depends(get_current_user),
):
    """Verify current user is a patient"""
    if current_user.get("user_type") != "patient":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only patients can access this resource",
        )
    return current_user


async def get_current_doctor_profile(
    current_doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db),
) -> Doctor:
    """Resolve the activated doctor profile of the current doctor user"""
    doctor = db.query(Doctor).filter(Doctor.user_id == current_doctor["user_id"]).first()
    if not doctor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Doctor profile is not activated",
        )
    return doctor
