"""Queue schemas."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core.constants import QueuePriority


class QueueJoin(BaseModel):
    doctor_id: int
    priority: QueuePriority = QueuePriority.NORMAL
    notes: Optional[str] = Field(None, max_length=500)


class QueueStatusUpdate(BaseModel):
    status: Literal["completed", "cancelled", "no-show"]


class QueueEntryRead(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    position: int
    status: str
    priority: str
    notes: Optional[str] = None
    estimated_wait_time: Optional[int] = None
    actual_wait_time: Optional[int] = None
    consultation_start_time: Optional[datetime] = None
    consultation_end_time: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DoctorQueueView(BaseModel):
    doctor_id: int
    avg_consultation_minutes: int
    waiting_count: int
    in_consultation: Optional[QueueEntryRead] = None
    waiting: List[QueueEntryRead]


class PatientQueueStatus(BaseModel):
    entry: QueueEntryRead
    patients_ahead: int
    estimated_wait_minutes: int
