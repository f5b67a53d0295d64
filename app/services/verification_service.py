"""Doctor credential verification workflow.

Every status change goes through `VerificationService._transition`, which
re-checks the expected prior status inside the UPDATE and writes the
matching timeline entry in the same commit.
"""
import logging
from collections import Counter
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.constants import (
    DocumentStatus,
    DocumentType,
    GOVERNMENT_ID_TYPES,
    OPEN_VERIFICATION_STATUSES,
    RiskLevel,
    VerificationStatus,
    VERIFICATION_TRANSITIONS,
)
from app.models.audit import AdminActivityLog
from app.models.doctor import Doctor
from app.models.document import VerificationDocument
from app.models.user import User
from app.models.verification import VerificationRecord, VerificationTimelineEntry
from app.schemas.risk import ExistingAccount, RiskAssessment, RiskCandidate
from app.schemas.verification import TimelineEntryRead
from app.services.account_service import AccountService
from app.services.license_registry_service import LicenseRegistryService, license_registry
from app.services.notification_service import (
    ADMIN_ACTION,
    DOCTOR_VERIFIED,
    NEW_DOCTOR_VERIFICATION,
    VERIFICATION_ON_HOLD,
    VERIFICATION_REJECTED,
    VERIFICATION_STATUS_CHANGED,
    notifier,
)
from app.services.risk_assessment_service import RiskAssessmentService
from app.utils.errors import (
    AppealAlreadySubmitted,
    DocumentNotFound,
    DuplicateLicenseNumber,
    DuplicateVerification,
    InvalidLicenseFormat,
    InvalidStateTransition,
    MissingRequiredDocuments,
    RateLimited,
    UserNotFoundError,
    ValidationFailed,
    VerificationNotFound,
)
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

MAIN_PATH = (
    VerificationStatus.PENDING_DOCUMENTS,
    VerificationStatus.DOCUMENTS_UPLOADED,
    VerificationStatus.AUTOMATED_VERIFICATION,
    VerificationStatus.MANUAL_REVIEW,
    VerificationStatus.APPROVED,
)

# Statuses off the main path
PROGRESS_OVERRIDES = {
    VerificationStatus.REJECTED: 100,
    VerificationStatus.SUSPENDED: 100,
    VerificationStatus.APPEAL_PENDING: 75,
}

ESTIMATED_COMPLETION = {
    VerificationStatus.PENDING_DOCUMENTS: "1-2 days",
    VerificationStatus.DOCUMENTS_UPLOADED: "2-4 hours",
    VerificationStatus.AUTOMATED_VERIFICATION: "2-4 hours",
    VerificationStatus.MANUAL_REVIEW: "24-72 hours",
    VerificationStatus.APPROVED: "Immediate",
    VerificationStatus.REJECTED: "Immediate",
    VerificationStatus.SUSPENDED: "Varies",
    VerificationStatus.APPEAL_PENDING: "48-72 hours",
}

NEXT_STEPS = {
    VerificationStatus.PENDING_DOCUMENTS: ["Upload required documents"],
    VerificationStatus.DOCUMENTS_UPLOADED: ["Wait for automated processing"],
    VerificationStatus.AUTOMATED_VERIFICATION: ["Wait for verification results", "Admin review if needed"],
    VerificationStatus.MANUAL_REVIEW: ["Wait for admin review", "Respond to any requests"],
    VerificationStatus.APPROVED: ["Account activated", "Start using the platform"],
    VerificationStatus.REJECTED: ["Review rejection reason", "Submit appeal if needed"],
    VerificationStatus.SUSPENDED: ["Contact support", "Provide additional information"],
    VerificationStatus.APPEAL_PENDING: ["Wait for appeal review", "Respond to admin requests"],
}

REQUIRED_CONSENTS = (
    "terms_accepted",
    "privacy_policy_accepted",
    "code_of_conduct_accepted",
    "data_processing_consent",
)


def _value(status) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def _as_dict(data: Any) -> Dict[str, Any]:
    if hasattr(data, "model_dump"):
        return data.model_dump(mode="json")
    return dict(data)


class VerificationService:
    """
    Lifecycle of one doctor's credential verification:
    - registration and document upload (candidate)
    - automated risk + license pipeline (background)
    - admin review, suspension and appeals
    """

    # -------------------------------------------------------------------------
    # Lookup helpers
    # -------------------------------------------------------------------------
    @staticmethod
    def get(db: Session, record_id: int) -> VerificationRecord:
        record = db.query(VerificationRecord).filter(VerificationRecord.id == record_id).first()
        if not record:
            raise VerificationNotFound()
        return record

    @staticmethod
    def get_by_user(db: Session, user_id: int) -> VerificationRecord:
        record = db.query(VerificationRecord).filter(VerificationRecord.user_id == user_id).first()
        if not record:
            raise VerificationNotFound("No verification record for this account")
        return record

    @staticmethod
    def _require_status(record: VerificationRecord, *expected) -> None:
        if record.status not in {_value(s) for s in expected}:
            raise InvalidStateTransition(record.status, [_value(s) for s in expected])

    # -------------------------------------------------------------------------
    # Transition core
    # -------------------------------------------------------------------------
    @staticmethod
    def _transition(
        db: Session,
        record: VerificationRecord,
        expected,
        new_status,
        action: str,
        actor: Any = SYSTEM_ACTOR,
        notes: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        **fields,
    ) -> VerificationRecord:
        """
        Compare-and-set `status` from `expected` to `new_status` and append the
        timeline entry in the same commit. Pending session changes are
        committed with it, or discarded when the record has moved on.
        """
        expected_values = tuple(
            _value(s) for s in (expected if isinstance(expected, (tuple, list, set)) else (expected,))
        )
        new_value = _value(new_status)
        for current in expected_values:
            if VerificationStatus(new_value) not in VERIFICATION_TRANSITIONS[VerificationStatus(current)]:
                raise InvalidStateTransition(current, new_value)

        values = {"status": new_value, "updated_at": utcnow(), **fields}
        updated = (
            db.query(VerificationRecord)
            .filter(
                VerificationRecord.id == record.id,
                VerificationRecord.status.in_(expected_values),
            )
            .update(values, synchronize_session=False)
        )
        if not updated:
            db.rollback()
            db.refresh(record)
            raise InvalidStateTransition(record.status, expected_values)

        db.add(
            VerificationTimelineEntry(
                verification_id=record.id,
                action=action,
                status=new_value,
                actor=str(actor),
                notes=notes,
                context=context,
            )
        )
        db.commit()
        db.refresh(record)

        logger.info(
            f"Verification {record.id}: {'/'.join(expected_values)} -> {new_value} ({action}, actor={actor})"
        )
        return record

    @staticmethod
    def _note(
        db: Session,
        record: VerificationRecord,
        action: str,
        actor: Any = SYSTEM_ACTOR,
        notes: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Timeline entry that does not change status. Caller commits."""
        db.add(
            VerificationTimelineEntry(
                verification_id=record.id,
                action=action,
                status=record.status,
                actor=str(actor),
                notes=notes,
                context=context,
            )
        )

    @staticmethod
    def _log_admin(db: Session, admin_id: Any, record: VerificationRecord, activity: str, **details) -> None:
        db.add(
            AdminActivityLog(
                admin_id=str(admin_id),
                activity=f"verification:{record.id}:{activity}",
                target_type="verification",
                target_id=record.id,
                details=details or None,
            )
        )

    @staticmethod
    def _notify_status(record: VerificationRecord, event: str = VERIFICATION_STATUS_CHANGED, **extra) -> None:
        notifier.notify(
            event,
            {
                "verification_id": record.id,
                "user_id": record.user_id,
                "status": record.status,
                **extra,
            },
        )

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------
    @staticmethod
    def _personal_snapshot(user: User) -> Dict[str, Any]:
        return {
            "name": user.full_name,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "email": user.email,
            "phone": user.phone,
            "city": user.city,
            "state": user.state,
            "address": user.address,
            "date_of_birth": user.date_of_birth.isoformat() if user.date_of_birth else None,
            "gender": user.gender,
        }

    @staticmethod
    def submit(db: Session, user_id: int, data: Any) -> VerificationRecord:
        """Create the verification record in `pending_documents`."""
        payload = _as_dict(data)

        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise UserNotFoundError()

        if db.query(VerificationRecord).filter(VerificationRecord.user_id == user_id).first():
            raise DuplicateVerification()

        license_number = (payload.get("license_number") or "").strip().upper()
        license_format = LicenseRegistryService.validate_format(license_number)
        if not license_format["valid"]:
            raise InvalidLicenseFormat(license_number)

        bound = db.query(VerificationRecord).filter(VerificationRecord.license_number == license_number).first()
        if bound:
            raise DuplicateLicenseNumber(license_number)
        other_doctor = (
            db.query(Doctor)
            .filter(Doctor.license_number == license_number, Doctor.user_id != user_id)
            .first()
        )
        if other_doctor:
            raise DuplicateLicenseNumber(license_number)

        compliance = dict(payload.get("compliance") or {})
        missing_consents = [c for c in REQUIRED_CONSENTS if not compliance.get(c)]
        if missing_consents:
            raise ValidationFailed(
                "All mandatory consents must be accepted",
                errors={c: "must be accepted" for c in missing_consents},
            )
        compliance["consent_timestamp"] = utcnow().isoformat()

        professional_info = {
            "license_number": license_number,
            "specialization": payload.get("specialization"),
            "qualification": payload.get("qualification"),
            "experience": payload.get("experience"),
            "consultation_fee": payload.get("consultation_fee"),
            "clinic_name": payload.get("clinic_name"),
            "clinic_address": payload.get("clinic_address"),
            "working_hours": payload.get("working_hours"),
            "working_days": payload.get("working_days"),
        }

        record = VerificationRecord(
            user_id=user_id,
            status=VerificationStatus.PENDING_DOCUMENTS.value,
            license_number=license_number,
            issuing_council=license_format["authority"],
            personal_info=VerificationService._personal_snapshot(user),
            professional_info=professional_info,
            compliance=compliance,
        )
        db.add(record)
        try:
            db.flush()
            VerificationService._note(
                db,
                record,
                "registration_initiated",
                actor=user_id,
                notes="Doctor registration submitted",
                context={"issuing_council": license_format["authority"]},
            )
            db.commit()
        except IntegrityError:
            db.rollback()
            if db.query(VerificationRecord).filter(VerificationRecord.user_id == user_id).first():
                raise DuplicateVerification()
            raise DuplicateLicenseNumber(license_number)
        db.refresh(record)

        logger.info(f"Verification {record.id} created for user {user_id} ({license_format['authority']})")
        notifier.notify(
            NEW_DOCTOR_VERIFICATION,
            {
                "verification_id": record.id,
                "user_id": user_id,
                "doctor_name": user.full_name,
                "license_number": license_number,
                "specialization": professional_info["specialization"],
                "status": record.status,
            },
        )
        return record

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------
    @staticmethod
    def missing_documents(types: Iterable[str]) -> List[str]:
        """Mandatory set: license proof, degree proof and any one government id."""
        have = {_value(t) for t in types}
        missing = []
        for required in (DocumentType.NMC_LICENSE, DocumentType.MEDICAL_DEGREE):
            if required.value not in have:
                missing.append(required.value)
        if not any(t.value in have for t in GOVERNMENT_ID_TYPES):
            missing.append("government_id")
        return missing

    @staticmethod
    def upload_documents(db: Session, user_id: int, documents: Sequence[Any]) -> VerificationRecord:
        """Append documents and move to `documents_uploaded`, then schedule the automated pipeline."""
        record = VerificationService.get_by_user(db, user_id)
        VerificationService._require_status(record, VerificationStatus.PENDING_DOCUMENTS)

        docs = [_as_dict(d) for d in documents]
        new_types = [_value(d["doc_type"]) for d in docs]

        missing = VerificationService.missing_documents(
            [d.doc_type for d in record.documents] + new_types,
        )
        # Documents requested by a reviewer must be part of this upload
        missing += [t for t in (record.requested_documents or []) if t not in new_types and t not in missing]
        if missing:
            raise MissingRequiredDocuments(missing)

        now = utcnow()
        for doc in docs:
            db.add(
                VerificationDocument(
                    verification_id=record.id,
                    doc_type=_value(doc["doc_type"]),
                    file_name=doc["file_name"],
                    file_url=doc["file_url"],
                    file_size=doc.get("file_size"),
                    mime_type=doc.get("mime_type"),
                    uploaded_at=now,
                    status=DocumentStatus.PENDING.value,
                )
            )

        VerificationService._transition(
            db,
            record,
            VerificationStatus.PENDING_DOCUMENTS,
            VerificationStatus.DOCUMENTS_UPLOADED,
            "documents_uploaded",
            actor=user_id,
            notes=f"{len(docs)} document(s) uploaded",
            context={"documents": new_types},
            requested_documents=None,
        )
        VerificationService._notify_status(record)
        VerificationService.schedule_automated_verification(db, record)
        return record

    @staticmethod
    def schedule_automated_verification(
        db: Session,
        record: VerificationRecord,
        countdown: Optional[int] = None,
    ) -> Optional[str]:
        """Queue the delayed pipeline run. Failure to schedule is left to the stale-record sweep."""
        from app.tasks.verification_tasks import run_automated_verification_task

        try:
            result = run_automated_verification_task.apply_async(
                args=[record.id],
                countdown=settings.AUTOMATED_VERIFICATION_DELAY_SECONDS if countdown is None else countdown,
            )
        except Exception as e:
            logger.warning(f"Could not schedule automated verification for {record.id}: {e}")
            return None

        task_id = getattr(result, "id", None)
        if task_id:
            db.query(VerificationRecord).filter(VerificationRecord.id == record.id).update(
                {"automation_task_id": str(task_id)}, synchronize_session=False
            )
            db.commit()
            db.refresh(record)
        return task_id

    @staticmethod
    def _revoke_automation(record: VerificationRecord) -> None:
        if not record.automation_task_id:
            return
        try:
            from app.core.celery_app import celery_app

            celery_app.control.revoke(record.automation_task_id)
        except Exception as e:
            logger.warning(f"Could not revoke task {record.automation_task_id}: {e}")

    # -------------------------------------------------------------------------
    # Automated pipeline
    # -------------------------------------------------------------------------
    @staticmethod
    def build_candidate(record: VerificationRecord) -> RiskCandidate:
        personal = record.personal_info or {}
        professional = record.professional_info or {}
        dob = personal.get("date_of_birth")
        return RiskCandidate(
            user_id=record.user_id,
            name=personal.get("name"),
            email=personal.get("email"),
            phone=personal.get("phone"),
            license_number=record.license_number,
            specialization=professional.get("specialization"),
            consultation_fee=professional.get("consultation_fee"),
            city=personal.get("city"),
            state=personal.get("state"),
            date_of_birth=date.fromisoformat(dob) if dob else None,
            experience=professional.get("experience"),
            documents=[d.doc_type for d in record.documents],
        )

    @staticmethod
    def existing_accounts(db: Session, exclude_user_id: int) -> List[ExistingAccount]:
        licenses = {
            user_id: license_number
            for user_id, license_number in db.query(VerificationRecord.user_id, VerificationRecord.license_number)
        }
        for user_id, license_number in db.query(Doctor.user_id, Doctor.license_number):
            if license_number:
                licenses.setdefault(user_id, license_number)

        users = (
            db.query(User)
            .filter(User.id != exclude_user_id, User.user_type == "doctor")
            .all()
        )
        return [
            ExistingAccount(
                user_id=u.id,
                name=u.full_name,
                email=u.email,
                phone=u.phone,
                license_number=licenses.get(u.id),
            )
            for u in users
        ]

    @staticmethod
    def assess_record(db: Session, record: VerificationRecord) -> RiskAssessment:
        try:
            candidate = VerificationService.build_candidate(record)
            existing = VerificationService.existing_accounts(db, record.user_id)
            return RiskAssessmentService.assess(candidate, existing)
        except Exception as e:
            logger.exception(f"Risk assessment failed for verification {record.id}: {e}")
            return RiskAssessmentService.failed_assessment(str(e))

    @staticmethod
    def _risk_fields(assessment: RiskAssessment) -> Dict[str, Any]:
        return {
            "risk_assessment": assessment.model_dump(mode="json"),
            "risk_score": assessment.overall_risk_score,
            "risk_level": assessment.risk_level,
            "next_assessment_due_at": assessment.next_assessment_due_at,
        }

    @staticmethod
    def _license_check(record: VerificationRecord, result: Dict[str, Any], source: Optional[str] = None) -> Dict[str, Any]:
        details = result.get("result") or {}
        return {
            "license_number": record.license_number,
            "issuing_council": result.get("authority"),
            "council_name": result.get("authority_name"),
            "status": "verified" if result.get("success") else "unverified",
            "confidence": details.get("confidence"),
            "result": details or None,
            "error": result.get("error"),
            "error_code": result.get("error_code"),
            "source": source or result.get("source"),
            "last_checked_at": result.get("checked_at") or utcnow().isoformat(),
        }

    @staticmethod
    def auto_approval_allowed(assessment: RiskAssessment, license_result: Dict[str, Any]) -> bool:
        return (
            settings.AUTO_APPROVAL_ENABLED
            and assessment.error is None
            and not assessment.requires_manual_review
            and assessment.overall_risk_score < settings.AUTO_APPROVAL_MAX_RISK_SCORE
            and license_result.get("success") is True
        )

    @staticmethod
    def run_automated_verification(
        db: Session,
        record_id: int,
        registry: Optional[LicenseRegistryService] = None,
    ) -> Optional[VerificationRecord]:
        """
        Risk assessment + license check, then approve or route to manual review.
        Returns None when the record has already moved on.
        """
        record = db.query(VerificationRecord).filter(VerificationRecord.id == record_id).first()
        if not record:
            logger.warning(f"Automated verification skipped: record {record_id} not found")
            return None

        if record.status == VerificationStatus.DOCUMENTS_UPLOADED.value:
            try:
                VerificationService._transition(
                    db,
                    record,
                    VerificationStatus.DOCUMENTS_UPLOADED,
                    VerificationStatus.AUTOMATED_VERIFICATION,
                    "automated_verification_started",
                    automation_started_at=utcnow(),
                )
            except InvalidStateTransition:
                logger.info(f"Verification {record_id} moved on before automation started")
                return None
            VerificationService._notify_status(record)
        elif record.status != VerificationStatus.AUTOMATED_VERIFICATION.value:
            logger.info(f"Verification {record_id} is {record.status}; automated run is a no-op")
            return None

        registry = registry or license_registry
        try:
            assessment = VerificationService.assess_record(db, record)
            personal = record.personal_info or {}
            dob = personal.get("date_of_birth")
            license_result = registry.verify(
                record.license_number,
                personal.get("name"),
                date.fromisoformat(dob) if dob else None,
            )
            fields = {
                **VerificationService._risk_fields(assessment),
                "license_check": VerificationService._license_check(record, license_result),
            }
            context = {
                "risk_score": assessment.overall_risk_score,
                "risk_level": assessment.risk_level,
                "license_confirmed": bool(license_result.get("success")),
                "license_source": license_result.get("source"),
            }

            if VerificationService.auto_approval_allowed(assessment, license_result):
                VerificationService._transition(
                    db,
                    record,
                    VerificationStatus.AUTOMATED_VERIFICATION,
                    VerificationStatus.APPROVED,
                    "automated_approval",
                    notes="License confirmed and risk within auto-approval threshold",
                    context=context,
                    verification_method="automated",
                    reviewed_at=utcnow(),
                    **fields,
                )
                VerificationService.activate_account(db, record.id)
                VerificationService._notify_status(record, DOCTOR_VERIFIED, doctor_id=record.doctor_id)
                return record

            reasons = []
            if assessment.requires_manual_review:
                reasons.append(f"risk tier {assessment.risk_level}")
            elif assessment.overall_risk_score >= settings.AUTO_APPROVAL_MAX_RISK_SCORE:
                reasons.append(f"risk score {assessment.overall_risk_score}")
            if not license_result.get("success"):
                reasons.append(f"license not confirmed ({license_result.get('source')})")
            if not settings.AUTO_APPROVAL_ENABLED:
                reasons.append("auto-approval disabled")

            VerificationService._transition(
                db,
                record,
                VerificationStatus.AUTOMATED_VERIFICATION,
                VerificationStatus.MANUAL_REVIEW,
                "automated_verification_completed",
                notes=f"Manual review required: {', '.join(reasons) or 'policy'}",
                context=context,
                verification_method="manual",
                **fields,
            )
            VerificationService._notify_status(record)
            return record

        except InvalidStateTransition:
            logger.info(f"Verification {record_id} changed during automated run; verdict discarded")
            return None
        except Exception as e:
            logger.exception(f"Automated verification failed for {record_id}: {e}")
            db.rollback()
            try:
                VerificationService._transition(
                    db,
                    record,
                    VerificationStatus.AUTOMATED_VERIFICATION,
                    VerificationStatus.MANUAL_REVIEW,
                    "automated_verification_failed",
                    notes=f"Automated verification error: {e}",
                    context={"error": str(e)},
                    verification_method="manual",
                )
            except InvalidStateTransition:
                return None
            VerificationService._notify_status(record)
            return record

    @staticmethod
    def release_stale(db: Session) -> Dict[str, int]:
        """Fallback for records the delayed pipeline never finished."""
        now = utcnow()
        timeout_cutoff = now - timedelta(minutes=settings.AUTOMATED_VERIFICATION_TIMEOUT_MINUTES)
        stuck = (
            db.query(VerificationRecord)
            .filter(
                VerificationRecord.status == VerificationStatus.AUTOMATED_VERIFICATION.value,
                VerificationRecord.updated_at < timeout_cutoff,
            )
            .all()
        )
        released = 0
        for record in stuck:
            try:
                VerificationService._transition(
                    db,
                    record,
                    VerificationStatus.AUTOMATED_VERIFICATION,
                    VerificationStatus.MANUAL_REVIEW,
                    "automated_verification_timed_out",
                    notes=f"No automated verdict within {settings.AUTOMATED_VERIFICATION_TIMEOUT_MINUTES} minutes",
                    verification_method="manual",
                )
            except InvalidStateTransition:
                continue
            VerificationService._notify_status(record)
            released += 1

        reschedule_cutoff = now - timedelta(seconds=settings.AUTOMATED_VERIFICATION_DELAY_SECONDS * 2 + 60)
        waiting = (
            db.query(VerificationRecord)
            .filter(
                VerificationRecord.status == VerificationStatus.DOCUMENTS_UPLOADED.value,
                VerificationRecord.updated_at < reschedule_cutoff,
            )
            .all()
        )
        rescheduled = 0
        for record in waiting:
            if VerificationService.schedule_automated_verification(db, record, countdown=0):
                rescheduled += 1

        if released or rescheduled:
            logger.info(f"Stale verification sweep: released={released} rescheduled={rescheduled}")
        return {"released": released, "rescheduled": rescheduled}

    # -------------------------------------------------------------------------
    # Account activation
    # -------------------------------------------------------------------------
    @staticmethod
    def activate_account(db: Session, record_id: int, actor: Any = SYSTEM_ACTOR) -> bool:
        """
        Activate the doctor's account for an approved record. Retried in-process;
        a persistent failure is noted on the timeline and retried later.
        The record stays approved either way.
        """
        record = VerificationService.get(db, record_id)
        if record.status != VerificationStatus.APPROVED.value:
            logger.warning(f"Activation skipped for verification {record_id}: status {record.status}")
            return False

        last_error = None
        for attempt in range(1, settings.ACCOUNT_ACTIVATION_MAX_ATTEMPTS + 1):
            try:
                doctor = AccountService.activate_doctor_account(
                    db,
                    record.user_id,
                    profile=record.professional_info,
                    license_number=record.license_number,
                    issuing_council=record.issuing_council,
                )
                first_activation = record.account_activated_at is None
                record.doctor_id = doctor.id
                record.account_activated_at = record.account_activated_at or utcnow()
                record.activation_error = None
                if first_activation:
                    VerificationService._note(
                        db, record, "account_activated", actor=actor,
                        context={"doctor_id": doctor.id, "attempt": attempt},
                    )
                db.commit()
                db.refresh(record)
                return True
            except Exception as e:
                db.rollback()
                last_error = str(e)
                logger.warning(f"Activation attempt {attempt} failed for verification {record_id}: {e}")

        logger.error(f"Account activation failed for verification {record_id}: {last_error}")
        record = VerificationService.get(db, record_id)
        record.activation_error = last_error
        VerificationService._note(
            db, record, "account_activation_failed", actor=actor,
            notes=f"Account activation failed: {last_error}",
        )
        db.commit()
        db.refresh(record)

        from app.tasks.verification_tasks import retry_account_activation

        try:
            retry_account_activation.apply_async(
                args=[record_id],
                countdown=settings.ACCOUNT_ACTIVATION_RETRY_SECONDS,
            )
        except Exception as e:
            logger.warning(f"Could not schedule activation retry for {record_id}: {e}")
        return False

    # -------------------------------------------------------------------------
    # Admin review
    # -------------------------------------------------------------------------
    @staticmethod
    def admin_approve(db: Session, record_id: int, reviewer_id: int, notes: Optional[str] = None) -> VerificationRecord:
        record = VerificationService.get(db, record_id)
        VerificationService._require_status(record, VerificationStatus.MANUAL_REVIEW)

        now = utcnow()
        for document in record.documents:
            if document.status == DocumentStatus.PENDING.value:
                document.status = DocumentStatus.VERIFIED.value
                document.verified_by = reviewer_id
                document.verified_at = now
        VerificationService._log_admin(db, reviewer_id, record, "approved", notes=notes)
        VerificationService._transition(
            db,
            record,
            VerificationStatus.MANUAL_REVIEW,
            VerificationStatus.APPROVED,
            "admin_approved",
            actor=reviewer_id,
            notes=notes,
            reviewed_by=reviewer_id,
            reviewed_at=now,
            review_notes=notes,
            verification_method="manual",
        )

        VerificationService.activate_account(db, record.id, actor=reviewer_id)
        VerificationService._notify_status(record, DOCTOR_VERIFIED, doctor_id=record.doctor_id)
        notifier.notify(ADMIN_ACTION, {"action": "approved", "verification_id": record.id, "admin_id": reviewer_id})
        return record

    @staticmethod
    def admin_reject(
        db: Session,
        record_id: int,
        reviewer_id: int,
        reason: str,
        notes: Optional[str] = None,
    ) -> VerificationRecord:
        record = VerificationService.get(db, record_id)
        VerificationService._require_status(record, VerificationStatus.MANUAL_REVIEW)

        VerificationService._log_admin(db, reviewer_id, record, "rejected", reason=reason)
        VerificationService._transition(
            db,
            record,
            VerificationStatus.MANUAL_REVIEW,
            VerificationStatus.REJECTED,
            "admin_rejected",
            actor=reviewer_id,
            notes=notes or reason,
            context={"reason": reason},
            reviewed_by=reviewer_id,
            reviewed_at=utcnow(),
            review_notes=notes,
            rejection_reason=reason,
        )
        VerificationService._notify_status(record, VERIFICATION_REJECTED, reason=reason)
        notifier.notify(ADMIN_ACTION, {"action": "rejected", "verification_id": record.id, "admin_id": reviewer_id})
        return record

    @staticmethod
    def admin_hold(db: Session, record_id: int, reviewer_id: int, notes: Optional[str] = None) -> VerificationRecord:
        record = VerificationService.get(db, record_id)
        VerificationService._require_status(record, VerificationStatus.MANUAL_REVIEW)

        VerificationService._log_admin(db, reviewer_id, record, "on_hold", notes=notes)
        VerificationService._transition(
            db,
            record,
            VerificationStatus.MANUAL_REVIEW,
            VerificationStatus.MANUAL_REVIEW,
            "admin_put_on_hold",
            actor=reviewer_id,
            notes=notes,
            reviewed_by=reviewer_id,
            reviewed_at=utcnow(),
            review_notes=notes,
        )
        VerificationService._notify_status(record, VERIFICATION_ON_HOLD, notes=notes)
        return record

    @staticmethod
    def admin_request_documents(
        db: Session,
        record_id: int,
        reviewer_id: int,
        documents: Sequence[Any],
        notes: Optional[str] = None,
    ) -> VerificationRecord:
        """Send the record back to `pending_documents`, clearing the automated verdict."""
        record = VerificationService.get(db, record_id)
        VerificationService._require_status(record, VerificationStatus.MANUAL_REVIEW)

        requested = list(dict.fromkeys(_value(d) for d in documents))
        if not requested:
            raise ValidationFailed("At least one document type must be requested", errors={"documents": "required"})

        VerificationService._revoke_automation(record)
        VerificationService._log_admin(db, reviewer_id, record, "documents_requested", documents=requested)
        VerificationService._transition(
            db,
            record,
            VerificationStatus.MANUAL_REVIEW,
            VerificationStatus.PENDING_DOCUMENTS,
            "additional_documents_requested",
            actor=reviewer_id,
            notes=notes,
            context={
                "requested_documents": requested,
                "previous_risk_score": record.risk_score,
                "previous_license_status": (record.license_check or {}).get("status"),
            },
            requested_documents=requested,
            risk_assessment=None,
            risk_score=None,
            risk_level=None,
            license_check=None,
            automation_task_id=None,
            automation_started_at=None,
            verification_method=None,
            reviewed_by=reviewer_id,
            reviewed_at=utcnow(),
            review_notes=notes,
        )
        VerificationService._notify_status(record, requested_documents=requested)
        return record

    @staticmethod
    def admin_suspend(db: Session, record_id: int, reviewer_id: int, reason: str) -> VerificationRecord:
        record = VerificationService.get(db, record_id)
        VerificationService._require_status(record, VerificationStatus.APPROVED)

        AccountService.suspend_doctor_account(db, record.user_id, reason)
        VerificationService._log_admin(db, reviewer_id, record, "suspended", reason=reason)
        VerificationService._transition(
            db,
            record,
            VerificationStatus.APPROVED,
            VerificationStatus.SUSPENDED,
            "admin_suspended",
            actor=reviewer_id,
            notes=reason,
            reviewed_by=reviewer_id,
            reviewed_at=utcnow(),
        )
        VerificationService._notify_status(record, reason=reason)
        notifier.notify(ADMIN_ACTION, {"action": "suspended", "verification_id": record.id, "admin_id": reviewer_id})
        return record

    @staticmethod
    def review_document(
        db: Session,
        record_id: int,
        document_id: int,
        reviewer_id: int,
        verified: bool,
        notes: Optional[str] = None,
    ) -> VerificationDocument:
        record = VerificationService.get(db, record_id)
        VerificationService._require_status(record, VerificationStatus.MANUAL_REVIEW)

        document = (
            db.query(VerificationDocument)
            .filter(
                VerificationDocument.id == document_id,
                VerificationDocument.verification_id == record.id,
            )
            .first()
        )
        if not document:
            raise DocumentNotFound(document_id)

        document.status = DocumentStatus.VERIFIED.value if verified else DocumentStatus.REJECTED.value
        document.verified_by = reviewer_id
        document.verified_at = utcnow()
        document.verification_notes = notes

        VerificationService._log_admin(db, reviewer_id, record, f"document:{document_id}:{document.status}")
        VerificationService._note(
            db,
            record,
            "document_reviewed",
            actor=reviewer_id,
            notes=notes,
            context={"document_id": document_id, "doc_type": document.doc_type, "result": document.status},
        )
        db.commit()
        db.refresh(record)
        db.refresh(document)
        return document

    # -------------------------------------------------------------------------
    # Appeals
    # -------------------------------------------------------------------------
    @staticmethod
    def submit_appeal(
        db: Session,
        user_id: int,
        reason: str,
        supporting_documents: Optional[Sequence[str]] = None,
    ) -> VerificationRecord:
        record = VerificationService.get_by_user(db, user_id)
        if record.appeal:
            raise AppealAlreadySubmitted()
        VerificationService._require_status(record, VerificationStatus.REJECTED)

        reason = (reason or "").strip()
        if not settings.APPEAL_REASON_MIN_LENGTH <= len(reason) <= settings.APPEAL_REASON_MAX_LENGTH:
            raise ValidationFailed(
                "Invalid appeal",
                errors={
                    "reason": f"Appeal reason must be {settings.APPEAL_REASON_MIN_LENGTH}-"
                              f"{settings.APPEAL_REASON_MAX_LENGTH} characters"
                },
            )

        appeal = {
            "reason": reason,
            "supporting_documents": list(supporting_documents or []),
            "submitted_at": utcnow().isoformat(),
            "status": "pending",
            "reviewed_by": None,
            "reviewed_at": None,
            "review_notes": None,
        }
        VerificationService._transition(
            db,
            record,
            VerificationStatus.REJECTED,
            VerificationStatus.APPEAL_PENDING,
            "appeal_submitted",
            actor=user_id,
            notes=reason,
            appeal=appeal,
        )
        VerificationService._notify_status(record)
        notifier.notify(
            NEW_DOCTOR_VERIFICATION,
            {"verification_id": record.id, "user_id": user_id, "status": record.status, "appeal": True},
        )
        return record

    @staticmethod
    def admin_decide_appeal(
        db: Session,
        record_id: int,
        reviewer_id: int,
        accept: bool,
        notes: Optional[str] = None,
    ) -> VerificationRecord:
        record = VerificationService.get(db, record_id)
        VerificationService._require_status(record, VerificationStatus.APPEAL_PENDING)

        now = utcnow()
        appeal = {
            **(record.appeal or {}),
            "status": "accepted" if accept else "denied",
            "reviewed_by": reviewer_id,
            "reviewed_at": now.isoformat(),
            "review_notes": notes,
        }
        VerificationService._log_admin(db, reviewer_id, record, "appeal_accepted" if accept else "appeal_denied")
        VerificationService._transition(
            db,
            record,
            VerificationStatus.APPEAL_PENDING,
            VerificationStatus.MANUAL_REVIEW if accept else VerificationStatus.REJECTED,
            "appeal_accepted" if accept else "appeal_denied",
            actor=reviewer_id,
            notes=notes,
            appeal=appeal,
            reviewed_by=reviewer_id,
            reviewed_at=now,
        )
        event = VERIFICATION_STATUS_CHANGED if accept else VERIFICATION_REJECTED
        VerificationService._notify_status(record, event, appeal_status=appeal["status"])
        return record

    # -------------------------------------------------------------------------
    # License sync and periodic reassessment
    # -------------------------------------------------------------------------
    @staticmethod
    def resync_license(
        db: Session,
        record_id: int,
        registry: Optional[LicenseRegistryService] = None,
        actor: Any = SYSTEM_ACTOR,
    ) -> VerificationRecord:
        """Re-run the registry check; raises `RateLimited` instead of degrading."""
        record = VerificationService.get(db, record_id)
        registry = registry or license_registry
        personal = record.personal_info or {}
        dob = personal.get("date_of_birth")

        result = registry.verify(
            record.license_number,
            personal.get("name"),
            date.fromisoformat(dob) if dob else None,
            raise_on_rate_limit=True,
        )
        record.license_check = VerificationService._license_check(record, result, source="periodic_sync")
        VerificationService._note(
            db,
            record,
            "license_resynced",
            actor=actor,
            context={"success": bool(result.get("success")), "source": result.get("source")},
        )
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def reassess(
        db: Session,
        record_id: int,
        registry: Optional[LicenseRegistryService] = None,
    ) -> RiskAssessment:
        """Periodic re-check of an approved doctor. Never changes status."""
        record = VerificationService.get(db, record_id)
        previous_score, previous_level = record.risk_score, record.risk_level
        assessment = VerificationService.assess_record(db, record)
        for field, value in VerificationService._risk_fields(assessment).items():
            setattr(record, field, value)

        # The stored assessment is replaced; the timeline keeps the history
        VerificationService._note(
            db,
            record,
            "risk_reassessed",
            notes=f"Periodic reassessment: {assessment.risk_level} risk (score {assessment.overall_risk_score})",
            context={
                "risk_score": assessment.overall_risk_score,
                "risk_level": assessment.risk_level,
                "previous_risk_score": previous_score,
                "previous_risk_level": previous_level,
            },
        )

        flagged = assessment.risk_level in (RiskLevel.HIGH.value, RiskLevel.CRITICAL.value)
        if flagged:
            logger.warning(
                f"Approved doctor verification {record.id} reassessed as {assessment.risk_level} "
                f"(score {assessment.overall_risk_score})"
            )
            VerificationService._note(
                db,
                record,
                "risk_reassessment_flagged",
                notes=f"Periodic reassessment returned {assessment.risk_level} risk; operator review advised",
                context={"risk_score": assessment.overall_risk_score, "risk_level": assessment.risk_level},
            )
        db.commit()

        try:
            VerificationService.resync_license(db, record.id, registry=registry)
        except RateLimited as e:
            logger.warning(f"License resync deferred for verification {record.id}: {e.message}")
            VerificationService.schedule_license_resync(record.id, countdown=e.extra.get("retry_after", 60))
        return assessment

    @staticmethod
    def schedule_license_resync(record_id: int, countdown: int = 0) -> Optional[str]:
        from app.tasks.verification_tasks import resync_license_task

        try:
            return getattr(resync_license_task.apply_async(args=[record_id], countdown=countdown), "id", None)
        except Exception as e:
            logger.warning(f"Could not schedule license resync for {record_id}: {e}")
            return None

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------
    @staticmethod
    def progress(status: str) -> int:
        status = VerificationStatus(status)
        if status in PROGRESS_OVERRIDES:
            return PROGRESS_OVERRIDES[status]
        return round(MAIN_PATH.index(status) / (len(MAIN_PATH) - 1) * 100)

    @staticmethod
    def check_status(db: Session, user_id: int) -> Dict[str, Any]:
        record = VerificationService.get_by_user(db, user_id)
        status = VerificationStatus(record.status)
        license_check = record.license_check or None
        return {
            "verification_id": record.id,
            "status": record.status,
            "progress": VerificationService.progress(record.status),
            "estimated_completion": ESTIMATED_COMPLETION.get(status, "Unknown"),
            "next_steps": NEXT_STEPS.get(status, ["Contact support"]),
            "documents": len(record.documents),
            "risk_level": record.risk_level,
            "license_check": (
                {k: license_check.get(k) for k in ("status", "issuing_council", "council_name", "source", "last_checked_at")}
                if license_check else None
            ),
            "appeal": (
                {k: record.appeal.get(k) for k in ("status", "submitted_at", "reviewed_at", "review_notes")}
                if record.appeal else None
            ),
            "requested_documents": record.requested_documents,
            "rejection_reason": record.rejection_reason,
            "timeline": [TimelineEntryRead.model_validate(e) for e in record.timeline],
            "last_updated": record.updated_at,
        }

    @staticmethod
    def list_pending(
        db: Session,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[VerificationRecord]:
        query = db.query(VerificationRecord)
        if status:
            query = query.filter(VerificationRecord.status == _value(status))
        else:
            query = query.filter(VerificationRecord.status.in_([s.value for s in OPEN_VERIFICATION_STATUSES]))
        return (
            query.order_by(VerificationRecord.submitted_at.asc(), VerificationRecord.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @staticmethod
    def list_high_risk(db: Session, limit: int = 50) -> List[VerificationRecord]:
        return (
            db.query(VerificationRecord)
            .filter(
                VerificationRecord.risk_level.in_([RiskLevel.HIGH.value, RiskLevel.CRITICAL.value]),
                VerificationRecord.status != VerificationStatus.APPROVED.value,
            )
            .order_by(VerificationRecord.risk_score.desc(), VerificationRecord.id.asc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def stats(db: Session) -> Dict[str, Any]:
        by_status = {s.value: 0 for s in VerificationStatus}
        by_city: Counter = Counter()
        by_specialization: Counter = Counter()
        total = 0
        for status, personal, professional in db.query(
            VerificationRecord.status,
            VerificationRecord.personal_info,
            VerificationRecord.professional_info,
        ):
            total += 1
            by_status[status] = by_status.get(status, 0) + 1
            by_city[(personal or {}).get("city") or "Unknown"] += 1
            by_specialization[(professional or {}).get("specialization") or "Unknown"] += 1

        return {
            "total": total,
            "by_status": by_status,
            "by_city": dict(by_city.most_common()),
            "by_specialization": dict(by_specialization.most_common()),
        }

    @staticmethod
    def due_for_reassessment(db: Session, limit: int = 100) -> List[int]:
        rows = (
            db.query(VerificationRecord.id)
            .filter(
                VerificationRecord.status == VerificationStatus.APPROVED.value,
                VerificationRecord.next_assessment_due_at.isnot(None),
                VerificationRecord.next_assessment_due_at <= utcnow(),
            )
            .order_by(VerificationRecord.next_assessment_due_at.asc())
            .limit(limit)
            .all()
        )
        return [r[0] for r in rows]
