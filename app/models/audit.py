"""Admin activity log model."""
from sqlalchemy import Column, String, DateTime, Integer, JSON
from app.core.database import Base
from datetime import datetime


class AdminActivityLog(Base):
    __tablename__ = "admin_activity_logs"

    id = Column(Integer, primary_key=True)
    admin_id = Column(String, nullable=False, index=True)
    activity = Column(String, nullable=False)
    # e.g. ("verification", 12)
    target_type = Column(String(50), nullable=True)
    target_id = Column(Integer, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
