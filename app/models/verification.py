"""Doctor credential verification record and its audit timeline."""
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship

from app.core.database import Base


class VerificationRecord(Base):
    __tablename__ = "verification_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    # Set once the record reaches an activatable state
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=True)

    status = Column(String(50), default="pending_documents", nullable=False, index=True)

    license_number = Column(String(50), unique=True, index=True, nullable=False)
    issuing_council = Column(String(50), nullable=True)

    # Submitted claims, immutable outside a request-documents cycle
    personal_info = Column(JSON, nullable=False)
    professional_info = Column(JSON, nullable=False)
    compliance = Column(JSON, nullable=True)

    # Cached registry result: license_number, issuing_council, status,
    # confidence, result, source, last_checked_at
    license_check = Column(JSON, nullable=True)

    # Latest risk engine output; history lives in the timeline
    risk_assessment = Column(JSON, nullable=True)
    risk_score = Column(Integer, nullable=True, index=True)
    risk_level = Column(String(20), nullable=True, index=True)
    next_assessment_due_at = Column(DateTime, nullable=True, index=True)

    requested_documents = Column(JSON, nullable=True)

    # Review details
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    verification_method = Column(String(20), nullable=True)  # automated | manual

    # {reason, supporting_documents, submitted_at, status, reviewed_by, reviewed_at, review_notes}
    appeal = Column(JSON, nullable=True)

    # Deferred automated verification
    automation_task_id = Column(String(255), nullable=True)
    automation_started_at = Column(DateTime, nullable=True)

    # Account activation is tracked separately from the verification status
    account_activated_at = Column(DateTime, nullable=True)
    activation_error = Column(Text, nullable=True)

    submitted_at = Column(DateTime, default=datetime.utcnow, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", foreign_keys=[user_id])
    doctor = relationship("Doctor", foreign_keys=[doctor_id])
    documents = relationship(
        "VerificationDocument",
        back_populates="verification",
        order_by="VerificationDocument.id",
        cascade="all, delete-orphan",
    )
    timeline = relationship(
        "VerificationTimelineEntry",
        back_populates="verification",
        order_by="VerificationTimelineEntry.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<VerificationRecord {self.id} user={self.user_id} status={self.status}>"


class VerificationTimelineEntry(Base):
    """Append-only audit entry. Rows are never updated or deleted."""
    __tablename__ = "verification_timeline"

    id = Column(Integer, primary_key=True)
    verification_id = Column(
        Integer,
        ForeignKey("verification_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action = Column(String(100), nullable=False)
    status = Column(String(50), nullable=False)
    actor = Column(String(64), nullable=False, default="system")
    notes = Column(Text, nullable=True)
    context = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    verification = relationship("VerificationRecord", back_populates="timeline")
