"""Verification document model."""
from datetime import datetime

from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from app.core.database import Base


class VerificationDocument(Base):
    __tablename__ = "verification_documents"

    id = Column(Integer, primary_key=True, index=True)
    verification_id = Column(
        Integer,
        ForeignKey("verification_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    doc_type = Column(String(50), nullable=False)
    file_name = Column(String(255), nullable=False)
    # Storage reference; the bytes live in the file store
    file_url = Column(String, nullable=False)
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String(100), nullable=True)
    uploaded_at = Column(DateTime, default=datetime.utcnow)

    status = Column(String(20), default="pending", nullable=False)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verification_notes = Column(Text, nullable=True)

    verification = relationship("VerificationRecord", back_populates="documents")
