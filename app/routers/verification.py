"""Doctor self-service verification endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies.auth import get_current_doctor
from app.dependencies.rate_limit import rate_limit
from app.schemas.verification import (
    AppealCreate,
    DocumentsUploadRequest,
    VerificationRead,
    VerificationRegister,
    VerificationStatusView,
)
from app.services.verification_service import VerificationService

router = APIRouter(prefix="/doctor-verification", tags=["doctor-verification"])


@router.post("/register", response_model=VerificationRead, status_code=201)
async def register(
    payload: VerificationRegister,
    current_doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit),
):
    return VerificationService.submit(db, current_doctor["user_id"], payload)


@router.post("/documents", response_model=VerificationRead)
async def upload_documents(
    payload: DocumentsUploadRequest,
    current_doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit),
):
    return VerificationService.upload_documents(db, current_doctor["user_id"], payload.documents)


@router.get("/status", response_model=VerificationStatusView)
async def verification_status(
    current_doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    return VerificationService.check_status(db, current_doctor["user_id"])


@router.post("/appeal", response_model=VerificationRead)
async def appeal(
    payload: AppealCreate,
    current_doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit),
):
    return VerificationService.submit_appeal(
        db,
        current_doctor["user_id"],
        payload.reason,
        payload.supporting_documents,
    )
