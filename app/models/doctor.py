from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, DateTime, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from app.core.database import Base
from app.core.config import settings


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    # License details (copied from the verification record on activation)
    license_number = Column(String(50), unique=True, index=True, nullable=True)
    issuing_council = Column(String(50), nullable=True)

    specialization = Column(String(100), nullable=True, index=True)
    qualification = Column(String(200), nullable=True)
    years_of_experience = Column(Integer, nullable=True)
    consultation_fee = Column(Integer, nullable=True)

    clinic_name = Column(String(200), nullable=True)
    clinic_address = Column(Text, nullable=True)
    working_hours = Column(JSON, nullable=True)
    working_days = Column(JSON, nullable=True)

    # Queue settings
    avg_consultation_minutes = Column(Integer, default=settings.DEFAULT_AVG_CONSULTATION_MINUTES, nullable=False)
    max_queue_size = Column(Integer, default=settings.DEFAULT_MAX_QUEUE_SIZE, nullable=False)

    # Only activated doctors can receive queue entries
    is_available = Column(Boolean, default=False, index=True)
    verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="doctor", foreign_keys=[user_id])
    queue_entries = relationship("QueueEntry", back_populates="doctor")
