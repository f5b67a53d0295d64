"""Risk assessment value objects."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RiskCandidate(BaseModel):
    """Snapshot of the claims a doctor candidate is assessed on."""
    user_id: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None
    specialization: Optional[str] = None
    consultation_fee: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    date_of_birth: Optional[date] = None
    experience: Optional[int] = None
    documents: List[str] = Field(default_factory=list)


class ExistingAccount(BaseModel):
    user_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None


class RiskFactorResult(BaseModel):
    factor: str
    score: int = Field(0, ge=0, le=100)
    description: str
    severity: str
    detected: bool
    details: Dict[str, Any] = Field(default_factory=dict)


class RiskAssessment(BaseModel):
    overall_risk_score: int = Field(..., ge=0, le=100)
    risk_level: str
    risk_factors: List[RiskFactorResult]
    assessed_at: datetime
    next_assessment_due_at: datetime
    recommendations: List[str] = Field(default_factory=list)
    requires_manual_review: bool
    error: Optional[str] = None
