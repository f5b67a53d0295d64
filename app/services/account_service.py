import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.constants import UserStatus
from app.models.doctor import Doctor
from app.models.user import User
from app.utils.errors import UserNotFoundError
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class AccountService:

    @staticmethod
    def activate_doctor_account(
        db: Session,
        user_id: int,
        profile: Optional[Dict[str, Any]] = None,
        license_number: Optional[str] = None,
        issuing_council: Optional[str] = None,
    ) -> Doctor:
        """
        Mark the owning account active + verified and make the doctor profile
        queueable. Safe to call repeatedly; the profile is created on first use.
        Flushes but does not commit.
        """
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise UserNotFoundError()

        profile = profile or {}
        doctor = db.query(Doctor).filter(Doctor.user_id == user_id).with_for_update().first()
        if not doctor:
            doctor = Doctor(user_id=user_id)
            db.add(doctor)

        if license_number:
            doctor.license_number = license_number
        if issuing_council:
            doctor.issuing_council = issuing_council
        for field in (
            "specialization",
            "qualification",
            "clinic_name",
            "clinic_address",
            "working_hours",
            "working_days",
        ):
            if profile.get(field) is not None:
                setattr(doctor, field, profile[field])
        if profile.get("experience") is not None:
            doctor.years_of_experience = profile["experience"]
        if profile.get("consultation_fee") is not None:
            doctor.consultation_fee = int(profile["consultation_fee"])

        doctor.is_available = True
        doctor.verified_at = doctor.verified_at or utcnow()

        user.status = UserStatus.ACTIVE.value
        user.status_reason = None
        user.is_active = True
        user.is_verified = True

        db.flush()
        logger.info(f"Doctor account activated for user {user_id} (doctor {doctor.id})")
        return doctor

    @staticmethod
    def suspend_doctor_account(db: Session, user_id: int, reason: Optional[str] = None) -> None:
        """Take the doctor out of queueing. Flushes but does not commit."""
        user = db.query(User).filter(User.id == user_id).first()
        if user:
            user.status = UserStatus.SUSPENDED.value
            user.status_reason = reason
            user.is_active = False

        doctor = db.query(Doctor).filter(Doctor.user_id == user_id).first()
        if doctor:
            doctor.is_available = False
        db.flush()
