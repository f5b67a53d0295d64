import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.cache.cache_service import redis_cache
from app.core.config import settings
from app.core.constants import ACTIVE_QUEUE_STATUSES, QueuePriority, QueueStatus
from app.models.doctor import Doctor
from app.models.queue import QueueEntry
from app.schemas.queue import QueueEntryRead
from app.services.notification_service import (
    QUEUE_COMPLETED,
    QUEUE_JOINED,
    QUEUE_UPDATED,
    notifier,
)
from app.utils.errors import (
    AlreadyQueued,
    DoctorNotAvailable,
    InvalidQueueTransition,
    QueueEntryNotFound,
    QueueFull,
    UserNotFoundError,
)
from app.utils.helpers import minutes_between, utcnow

logger = logging.getLogger(__name__)

AVG_CONSULTATION_SAMPLE = 10
# Longer than any snapshot TTL
QUEUE_VERSION_TTL_SECONDS = 24 * 60 * 60
MIN_AVG_CONSULTATION_MINUTES = 5
MAX_AVG_CONSULTATION_MINUTES = 60


def _cache_key(doctor_id: int) -> str:
    return f"doctor_queue:{doctor_id}"


def _version_key(doctor_id: int) -> str:
    return f"doctor_queue_version:{doctor_id}"


def _serialize(entry: QueueEntry) -> Dict[str, Any]:
    return QueueEntryRead.model_validate(entry).model_dump(mode="json")


class QueueService:
    """
    Per-doctor walk-in queue:
    - dense 1..N positions among waiting entries, in join order
    - at most one active entry per patient
    - consultation start / complete / leave / no-show transitions

    Every mutation locks the doctor's row first, so position reads and
    rewrites for one doctor never interleave.
    """

    # -------------------------------------------------------------------------
    # Locking and compaction
    # -------------------------------------------------------------------------
    @staticmethod
    def _lock_doctor(db: Session, doctor_id: int) -> Doctor:
        doctor: Optional[Doctor] = (
            db.query(Doctor)
            .filter(Doctor.id == doctor_id)
            .with_for_update()
            .first()
        )
        if not doctor:
            raise UserNotFoundError("Doctor not found")
        return doctor

    @staticmethod
    def _compact_positions(db: Session, doctor_id: int) -> List[QueueEntry]:
        """Renumber the doctor's waiting entries 1..N by join time."""
        db.flush()
        waiting: List[QueueEntry] = (
            db.query(QueueEntry)
            .filter(
                QueueEntry.doctor_id == doctor_id,
                QueueEntry.status == QueueStatus.WAITING.value,
            )
            .order_by(QueueEntry.created_at.asc(), QueueEntry.id.asc())
            .all()
        )
        for position, entry in enumerate(waiting, start=1):
            if entry.position != position:
                entry.position = position
        return waiting

    @staticmethod
    def _active_entry(db: Session, patient_id: int) -> Optional[QueueEntry]:
        return (
            db.query(QueueEntry)
            .filter(
                QueueEntry.patient_id == patient_id,
                QueueEntry.status.in_(ACTIVE_QUEUE_STATUSES),
            )
            .first()
        )

    @staticmethod
    async def _after_mutation(doctor_id: int, event: str, entry: QueueEntry) -> None:
        await redis_cache.set(_version_key(doctor_id), uuid.uuid4().hex, ttl=QUEUE_VERSION_TTL_SECONDS)
        await redis_cache.delete(_cache_key(doctor_id))
        notifier.notify(
            event,
            {
                "queue_id": entry.id,
                "doctor_id": doctor_id,
                "patient_id": entry.patient_id,
                "status": entry.status,
                "position": entry.position,
            },
        )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------
    @staticmethod
    async def join(
        db: Session,
        patient_id: int,
        doctor_id: int,
        priority: str = QueuePriority.NORMAL.value,
        notes: Optional[str] = None,
    ) -> QueueEntry:
        """
        Append the patient to the doctor's queue.
        Position is max(waiting) + 1; priority is recorded only.
        """
        try:
            doctor = QueueService._lock_doctor(db, doctor_id)
            if not doctor.is_available:
                raise DoctorNotAvailable(doctor_id)

            active = QueueService._active_entry(db, patient_id)
            if active:
                raise AlreadyQueued(active.id)

            waiting_count, max_position = (
                db.query(func.count(QueueEntry.id), func.max(QueueEntry.position))
                .filter(
                    QueueEntry.doctor_id == doctor_id,
                    QueueEntry.status == QueueStatus.WAITING.value,
                )
                .one()
            )
            if waiting_count >= doctor.max_queue_size:
                raise QueueFull(doctor_id, doctor.max_queue_size)

            position = (max_position or 0) + 1
            entry = QueueEntry(
                doctor_id=doctor_id,
                patient_id=patient_id,
                position=position,
                status=QueueStatus.WAITING.value,
                priority=getattr(priority, "value", priority),
                notes=notes,
                estimated_wait_time=(position - 1) * doctor.avg_consultation_minutes,
                created_at=utcnow(),
            )
            db.add(entry)
            db.commit()
        except IntegrityError:
            db.rollback()
            # Lost a race against a concurrent join by the same patient
            active = QueueService._active_entry(db, patient_id)
            if active:
                raise AlreadyQueued(active.id)
            raise
        except Exception:
            db.rollback()
            raise

        db.refresh(entry)
        logger.info(f"Patient {patient_id} joined doctor {doctor_id} queue at position {entry.position}")
        await QueueService._after_mutation(doctor_id, QUEUE_JOINED, entry)
        return entry

    @staticmethod
    async def leave(db: Session, queue_id: int, patient_id: int) -> QueueEntry:
        """Cancel the patient's own waiting entry."""
        entry = (
            db.query(QueueEntry)
            .filter(QueueEntry.id == queue_id, QueueEntry.patient_id == patient_id)
            .first()
        )
        if not entry or entry.status != QueueStatus.WAITING.value:
            raise QueueEntryNotFound()

        try:
            QueueService._lock_doctor(db, entry.doctor_id)
            db.refresh(entry)
            if entry.status != QueueStatus.WAITING.value:
                raise QueueEntryNotFound()

            entry.status = QueueStatus.CANCELLED.value
            entry.updated_at = utcnow()
            QueueService._compact_positions(db, entry.doctor_id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(entry)
        logger.info(f"Patient {patient_id} left queue entry {queue_id}")
        await QueueService._after_mutation(entry.doctor_id, QUEUE_UPDATED, entry)
        return entry

    @staticmethod
    def _doctor_entry(db: Session, queue_id: int, doctor_id: int) -> QueueEntry:
        entry = (
            db.query(QueueEntry)
            .filter(QueueEntry.id == queue_id, QueueEntry.doctor_id == doctor_id)
            .first()
        )
        if not entry:
            raise QueueEntryNotFound("Queue entry not found for this doctor")
        return entry

    @staticmethod
    async def start_consultation(db: Session, queue_id: int, doctor_id: int) -> QueueEntry:
        try:
            QueueService._lock_doctor(db, doctor_id)
            entry = QueueService._doctor_entry(db, queue_id, doctor_id)
            db.refresh(entry)
            if entry.status != QueueStatus.WAITING.value:
                raise InvalidQueueTransition(entry.status, QueueStatus.IN_CONSULTATION.value)

            now = utcnow()
            entry.status = QueueStatus.IN_CONSULTATION.value
            entry.consultation_start_time = now
            entry.actual_wait_time = minutes_between(entry.created_at, now)
            entry.updated_at = now
            QueueService._compact_positions(db, doctor_id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(entry)
        logger.info(f"Doctor {doctor_id} started consultation for queue entry {queue_id}")
        await QueueService._after_mutation(doctor_id, QUEUE_UPDATED, entry)
        return entry

    @staticmethod
    def _recompute_average(db: Session, doctor: Doctor) -> int:
        recent = (
            db.query(QueueEntry)
            .filter(
                QueueEntry.doctor_id == doctor.id,
                QueueEntry.status == QueueStatus.COMPLETED.value,
                QueueEntry.consultation_start_time.isnot(None),
                QueueEntry.consultation_end_time.isnot(None),
            )
            .order_by(QueueEntry.consultation_end_time.desc())
            .limit(AVG_CONSULTATION_SAMPLE)
            .all()
        )
        if recent:
            durations = [
                (e.consultation_end_time - e.consultation_start_time).total_seconds() / 60 for e in recent
            ]
            average = round(sum(durations) / len(durations))
            doctor.avg_consultation_minutes = max(
                MIN_AVG_CONSULTATION_MINUTES, min(average, MAX_AVG_CONSULTATION_MINUTES)
            )
        return doctor.avg_consultation_minutes

    @staticmethod
    async def complete_consultation(db: Session, queue_id: int, doctor_id: int) -> QueueEntry:
        try:
            doctor = QueueService._lock_doctor(db, doctor_id)
            entry = QueueService._doctor_entry(db, queue_id, doctor_id)
            db.refresh(entry)
            if entry.status != QueueStatus.IN_CONSULTATION.value:
                raise InvalidQueueTransition(entry.status, QueueStatus.COMPLETED.value)

            now = utcnow()
            entry.status = QueueStatus.COMPLETED.value
            entry.consultation_end_time = now
            entry.actual_wait_time = minutes_between(entry.created_at, entry.consultation_start_time or now)
            entry.updated_at = now
            db.flush()
            QueueService._recompute_average(db, doctor)
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(entry)
        logger.info(f"Doctor {doctor_id} completed consultation for queue entry {queue_id}")
        await QueueService._after_mutation(doctor_id, QUEUE_COMPLETED, entry)
        return entry

    @staticmethod
    async def set_status(db: Session, queue_id: int, doctor_id: int, status: str) -> QueueEntry:
        """Administrative escape hatch: no-show / forced cancel / complete."""
        status = getattr(status, "value", status)
        if status == QueueStatus.COMPLETED.value:
            return await QueueService.complete_consultation(db, queue_id, doctor_id)

        if status not in (QueueStatus.CANCELLED.value, QueueStatus.NO_SHOW.value):
            raise InvalidQueueTransition("unknown", status)

        try:
            QueueService._lock_doctor(db, doctor_id)
            entry = QueueService._doctor_entry(db, queue_id, doctor_id)
            db.refresh(entry)
            if entry.status != QueueStatus.WAITING.value:
                raise InvalidQueueTransition(entry.status, status)

            entry.status = status
            entry.updated_at = utcnow()
            QueueService._compact_positions(db, doctor_id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(entry)
        logger.info(f"Queue entry {queue_id} marked {status} by doctor {doctor_id}")
        await QueueService._after_mutation(doctor_id, QUEUE_UPDATED, entry)
        return entry

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------
    @staticmethod
    async def get_doctor_queue(db: Session, doctor_id: int) -> Dict[str, Any]:
        """
        Active queue: current consultation plus waiting entries by position.

        Snapshots are cached briefly and tagged with the doctor's queue version.
        Every mutation bumps the version, so a snapshot built from a read that
        raced a mutation is never served once that mutation has finished.
        """
        cache_key = _cache_key(doctor_id)
        version = await redis_cache.get(_version_key(doctor_id))
        cached = await redis_cache.get_json(cache_key)
        if isinstance(cached, dict) and cached.get("version") == version and "queue" in cached:
            return cached["queue"]

        doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if not doctor:
            raise UserNotFoundError("Doctor not found")

        entries: List[QueueEntry] = (
            db.query(QueueEntry)
            .filter(
                QueueEntry.doctor_id == doctor_id,
                QueueEntry.status.in_(ACTIVE_QUEUE_STATUSES),
            )
            .order_by(QueueEntry.position.asc(), QueueEntry.created_at.asc())
            .all()
        )
        in_consultation = next(
            (e for e in entries if e.status == QueueStatus.IN_CONSULTATION.value), None
        )
        waiting = [e for e in entries if e.status == QueueStatus.WAITING.value]

        result = {
            "doctor_id": doctor_id,
            "avg_consultation_minutes": doctor.avg_consultation_minutes,
            "waiting_count": len(waiting),
            "in_consultation": _serialize(in_consultation) if in_consultation else None,
            "waiting": [_serialize(e) for e in waiting],
        }
        await redis_cache.set_json(cache_key, {"version": version, "queue": result}, ttl=settings.QUEUE_CACHE_TTL_SECONDS)
        return result

    @staticmethod
    async def get_patient_status(db: Session, patient_id: int) -> Dict[str, Any]:
        entry = (
            db.query(QueueEntry)
            .filter(
                QueueEntry.patient_id == patient_id,
                QueueEntry.status.in_(ACTIVE_QUEUE_STATUSES),
            )
            .first()
        )
        if not entry:
            raise QueueEntryNotFound()

        doctor = db.query(Doctor).filter(Doctor.id == entry.doctor_id).first()
        avg = doctor.avg_consultation_minutes if doctor else settings.DEFAULT_AVG_CONSULTATION_MINUTES

        ahead = entry.position - 1 if entry.status == QueueStatus.WAITING.value else 0
        return {
            "entry": _serialize(entry),
            "patients_ahead": ahead,
            "estimated_wait_minutes": ahead * avg,
        }
