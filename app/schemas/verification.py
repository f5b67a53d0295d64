"""Doctor verification schemas."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.constants import DocumentType, WEEKDAYS

HHMM_PATTERN = r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$"


class WorkingHours(BaseModel):
    start: str = Field(..., pattern=HHMM_PATTERN)
    end: str = Field(..., pattern=HHMM_PATTERN)

    @field_validator("end")
    def validate_time_order(cls, v, info):
        start = info.data.get("start") if info and info.data else None
        if start and _minutes(v) <= _minutes(start):
            raise ValueError("end must be after start")
        return v


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class ComplianceConsents(BaseModel):
    terms_accepted: bool
    privacy_policy_accepted: bool
    code_of_conduct_accepted: bool
    data_processing_consent: bool
    aadhaar_consent: bool


class VerificationRegister(BaseModel):
    license_number: str = Field(..., min_length=1, max_length=50)
    specialization: str = Field(..., min_length=1, max_length=100)
    qualification: str = Field(..., min_length=1, max_length=200)
    experience: int = Field(..., ge=0, le=50)
    consultation_fee: float = Field(..., ge=100, le=10000)
    clinic_name: str = Field(..., min_length=2, max_length=100)
    clinic_address: str = Field(..., min_length=3, max_length=200)
    working_hours: WorkingHours
    working_days: List[str] = Field(..., min_length=1)
    compliance: ComplianceConsents

    @field_validator("license_number")
    def normalize_license(cls, v):
        return v.strip().upper()

    @field_validator("working_days")
    def validate_days(cls, v):
        days = [d.strip().lower() for d in v]
        invalid = [d for d in days if d not in WEEKDAYS]
        if invalid:
            raise ValueError(f"Invalid working day(s): {', '.join(invalid)}")
        return days


class DocumentUpload(BaseModel):
    """Reference to a file already placed in storage."""
    doc_type: DocumentType
    file_name: str = Field(..., min_length=1, max_length=255)
    file_url: str = Field(..., min_length=1)
    file_size: Optional[int] = Field(None, ge=0)
    mime_type: Optional[str] = None


class DocumentsUploadRequest(BaseModel):
    documents: List[DocumentUpload] = Field(..., min_length=1)


class AppealCreate(BaseModel):
    reason: str
    supporting_documents: List[str] = Field(default_factory=list)

    @field_validator("reason")
    def strip_reason(cls, v):
        return v.strip()


class AdminDecision(BaseModel):
    notes: Optional[str] = None


class AdminReject(BaseModel):
    reason: str = Field(..., min_length=1)
    notes: Optional[str] = None


class AdminRequestDocuments(BaseModel):
    documents: List[DocumentType] = Field(..., min_length=1)
    notes: Optional[str] = None


class AdminSuspend(BaseModel):
    reason: str = Field(..., min_length=1)


class AppealDecision(BaseModel):
    accept: bool
    notes: Optional[str] = None


class DocumentReview(BaseModel):
    verified: bool
    notes: Optional[str] = None


class DocumentRead(BaseModel):
    id: int
    doc_type: str
    file_name: str
    file_url: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    status: str
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    verification_notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TimelineEntryRead(BaseModel):
    id: int
    action: str
    status: str
    actor: str
    notes: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VerificationRead(BaseModel):
    id: int
    user_id: int
    doctor_id: Optional[int] = None
    status: str
    license_number: str
    issuing_council: Optional[str] = None
    personal_info: Dict[str, Any]
    professional_info: Dict[str, Any]
    compliance: Optional[Dict[str, Any]] = None
    license_check: Optional[Dict[str, Any]] = None
    risk_assessment: Optional[Dict[str, Any]] = None
    risk_score: Optional[int] = None
    risk_level: Optional[str] = None
    requested_documents: Optional[List[str]] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    verification_method: Optional[str] = None
    appeal: Optional[Dict[str, Any]] = None
    account_activated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    documents: List[DocumentRead] = []
    timeline: List[TimelineEntryRead] = []

    model_config = ConfigDict(from_attributes=True)


class VerificationSummary(BaseModel):
    id: int
    user_id: int
    status: str
    license_number: str
    issuing_council: Optional[str] = None
    risk_score: Optional[int] = None
    risk_level: Optional[str] = None
    submitted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class VerificationStatusView(BaseModel):
    verification_id: int
    status: str
    progress: int
    estimated_completion: str
    next_steps: List[str]
    documents: int
    risk_level: Optional[str] = None
    license_check: Optional[Dict[str, Any]] = None
    appeal: Optional[Dict[str, Any]] = None
    requested_documents: Optional[List[str]] = None
    rejection_reason: Optional[str] = None
    timeline: List[TimelineEntryRead]
    last_updated: Optional[datetime] = None
