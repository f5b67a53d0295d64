"""Walk-in queue entry model."""
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from app.core.database import Base


class QueueEntry(Base):
    __tablename__ = "queue_entries"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Meaningful only while waiting; kept as last known value afterwards
    position = Column(Integer, nullable=False)
    status = Column(String(30), default="waiting", nullable=False)
    priority = Column(String(20), default="normal", nullable=False)
    notes = Column(Text, nullable=True)

    estimated_wait_time = Column(Integer, default=0)  # minutes, computed at join
    actual_wait_time = Column(Integer, nullable=True)  # minutes, computed at consultation start

    consultation_start_time = Column(DateTime, nullable=True)
    consultation_end_time = Column(DateTime, nullable=True)

    # Join time, used as the compaction order
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    doctor = relationship("Doctor", back_populates="queue_entries")
    patient = relationship("User")

    __table_args__ = (
        Index("ix_queue_doctor_status_position", "doctor_id", "status", "position"),
        Index("ix_queue_patient_status", "patient_id", "status"),
        # A patient can hold at most one active entry system-wide
        Index(
            "uq_queue_active_patient",
            "patient_id",
            unique=True,
            postgresql_where=text("status IN ('waiting', 'in-consultation')"),
            sqlite_where=text("status IN ('waiting', 'in-consultation')"),
        ),
    )
