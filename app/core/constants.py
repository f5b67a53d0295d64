"""Application constants such as user roles and lifecycle states."""
from enum import Enum


class UserRole(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class UserStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class VerificationStatus(str, Enum):
    PENDING_DOCUMENTS = "pending_documents"
    DOCUMENTS_UPLOADED = "documents_uploaded"
    AUTOMATED_VERIFICATION = "automated_verification"
    MANUAL_REVIEW = "manual_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"
    APPEAL_PENDING = "appeal_pending"


# Allowed status edges. Hold is recorded as a manual_review -> manual_review entry.
VERIFICATION_TRANSITIONS = {
    VerificationStatus.PENDING_DOCUMENTS: {VerificationStatus.DOCUMENTS_UPLOADED},
    VerificationStatus.DOCUMENTS_UPLOADED: {VerificationStatus.AUTOMATED_VERIFICATION},
    VerificationStatus.AUTOMATED_VERIFICATION: {
        VerificationStatus.APPROVED,
        VerificationStatus.MANUAL_REVIEW,
    },
    VerificationStatus.MANUAL_REVIEW: {
        VerificationStatus.MANUAL_REVIEW,
        VerificationStatus.APPROVED,
        VerificationStatus.REJECTED,
        VerificationStatus.PENDING_DOCUMENTS,
    },
    VerificationStatus.APPROVED: {VerificationStatus.SUSPENDED},
    VerificationStatus.REJECTED: {VerificationStatus.APPEAL_PENDING},
    VerificationStatus.APPEAL_PENDING: {
        VerificationStatus.MANUAL_REVIEW,
        VerificationStatus.REJECTED,
    },
    VerificationStatus.SUSPENDED: set(),
}

# Statuses an admin still has to act on (or wait for)
OPEN_VERIFICATION_STATUSES = (
    VerificationStatus.PENDING_DOCUMENTS,
    VerificationStatus.DOCUMENTS_UPLOADED,
    VerificationStatus.AUTOMATED_VERIFICATION,
    VerificationStatus.MANUAL_REVIEW,
    VerificationStatus.APPEAL_PENDING,
)


class DocumentType(str, Enum):
    NMC_LICENSE = "nmc_license"
    MEDICAL_DEGREE = "medical_degree"
    GOVT_ID_AADHAAR = "govt_id_aadhaar"
    GOVT_ID_PAN = "govt_id_pan"
    GOVT_ID_DRIVING = "govt_id_driving"
    EXPERIENCE_CERTIFICATE = "experience_certificate"
    SELFIE_VIDEO = "selfie_video"
    OTHER = "other"


GOVERNMENT_ID_TYPES = (
    DocumentType.GOVT_ID_AADHAAR,
    DocumentType.GOVT_ID_PAN,
    DocumentType.GOVT_ID_DRIVING,
)


class DocumentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class QueueStatus(str, Enum):
    WAITING = "waiting"
    IN_CONSULTATION = "in-consultation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


ACTIVE_QUEUE_STATUSES = (QueueStatus.WAITING.value, QueueStatus.IN_CONSULTATION.value)


class QueuePriority(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
