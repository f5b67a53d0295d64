"""Walk-in queue endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.dependencies.auth import get_current_doctor_profile, get_current_patient
from app.dependencies.rate_limit import rate_limit
from app.schemas.queue import (
    DoctorQueueView,
    PatientQueueStatus,
    QueueEntryRead,
    QueueJoin,
    QueueStatusUpdate,
)
from app.services.queue_service import QueueService

router = APIRouter(prefix="/queue", tags=["queue"])


@router.post("/join", response_model=QueueEntryRead, status_code=201)
async def join_queue(
    payload: QueueJoin,
    current_patient = Depends(get_current_patient),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit),
):
    return await QueueService.join(
        db,
        current_patient["user_id"],
        payload.doctor_id,
        payload.priority.value,
        payload.notes,
    )


@router.get("/me", response_model=PatientQueueStatus)
async def my_queue_status(
    current_patient = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    return await QueueService.get_patient_status(db, current_patient["user_id"])


@router.get("/doctor/{doctor_id}", response_model=DoctorQueueView)
async def doctor_queue(doctor_id: int, db: Session = Depends(get_db)):
    return await QueueService.get_doctor_queue(db, doctor_id)


@router.post("/{queue_id}/leave", response_model=QueueEntryRead)
async def leave_queue(
    queue_id: int,
    current_patient = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    return await QueueService.leave(db, queue_id, current_patient["user_id"])


@router.post("/{queue_id}/start", response_model=QueueEntryRead)
async def start_consultation(
    queue_id: int,
    doctor = Depends(get_current_doctor_profile),
    db: Session = Depends(get_db),
):
    return await QueueService.start_consultation(db, queue_id, doctor.id)


@router.post("/{queue_id}/complete", response_model=QueueEntryRead)
async def complete_consultation(
    queue_id: int,
    doctor = Depends(get_current_doctor_profile),
    db: Session = Depends(get_db),
):
    return await QueueService.complete_consultation(db, queue_id, doctor.id)


@router.post("/{queue_id}/status", response_model=QueueEntryRead)
async def update_status(
    queue_id: int,
    payload: QueueStatusUpdate,
    doctor = Depends(get_current_doctor_profile),
    db: Session = Depends(get_db),
):
    return await QueueService.set_status(db, queue_id, doctor.id, payload.status)
