from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Text
from sqlalchemy.orm import relationship, validates
from datetime import datetime
from app.core.database import Base


class User(Base):
    """Account owned by the account subsystem.

    Only the fields the verification and queue engines read (identity snapshot,
    activation flags) live here.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), unique=True, index=True, nullable=True)
    first_name = Column(String(100))
    last_name = Column(String(100))

    # Profile
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    latitude = Column(String(32), nullable=True)
    longitude = Column(String(32), nullable=True)

    # Account status
    user_type = Column(String(50), index=True, nullable=False)
    status = Column(String(50), default="pending", index=True)
    status_reason = Column(Text, nullable=True)
    is_active = Column(Boolean, default=False)
    is_verified = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    doctor = relationship(
        "Doctor",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        foreign_keys="Doctor.user_id",
    )

    def __repr__(self):
        return f"<User {self.email}>"

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()

    @validates("phone")
    def normalize_phone(self, key, value):
        return value or None
