# app/tasks/verification_tasks.py
from celery import shared_task
import logging

from app.core.celery_app import celery_app  # noqa: F401
from app.core.database import session_scope
from app.services.verification_service import VerificationService
from app.utils.errors import RateLimited

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3)
def run_automated_verification_task(self, record_id: int):
    """
    Delayed automated verification for one record.
    Re-checks the record's status before writing; a record that has moved on
    is left untouched.
    """
    with session_scope() as db:
        record = VerificationService.run_automated_verification(db, record_id)
        if record is None:
            return {"record_id": record_id, "status": "skipped"}
        return {"record_id": record_id, "status": record.status}


@shared_task(bind=True, max_retries=5)
def retry_account_activation(self, record_id: int):
    with session_scope() as db:
        if VerificationService.activate_account(db, record_id):
            return {"record_id": record_id, "activated": True}
    logger.error(f"Account activation still failing for verification {record_id}")
    return {"record_id": record_id, "activated": False}


@shared_task
def release_stale_verifications():
    """Beat: move timed-out automated runs to manual review, reschedule unstarted ones."""
    with session_scope() as db:
        return VerificationService.release_stale(db)


@shared_task
def reassess_due_doctors(limit: int = 100):
    """Beat: periodic risk reassessment + license sync of approved doctors."""
    processed = 0
    with session_scope() as db:
        for record_id in VerificationService.due_for_reassessment(db, limit=limit):
            try:
                VerificationService.reassess(db, record_id)
                processed += 1
            except Exception as e:
                db.rollback()
                logger.exception(f"Reassessment failed for verification {record_id}: {e}")
    return {"processed": processed}


@shared_task(bind=True, max_retries=3)
def resync_license_task(self, record_id: int):
    try:
        with session_scope() as db:
            record = VerificationService.resync_license(db, record_id)
            return {"record_id": record_id, "license_status": (record.license_check or {}).get("status")}
    except RateLimited as e:
        raise self.retry(exc=e, countdown=e.extra.get("retry_after", 60))
