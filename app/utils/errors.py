"""Custom error definitions for API exceptions.

Every service error is an ``HTTPException`` whose ``detail`` is a dict with a
stable machine-readable ``code`` and a human ``message``.
"""
from typing import Any, Iterable, Optional

from fastapi import HTTPException
from starlette import status


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class UserNotFoundError(HTTPException):
    def __init__(self, detail: str = "User not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ServiceError(HTTPException):
    code = "service_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: Optional[int] = None, **extra: Any):
        self.message = message
        self.extra = extra
        detail = {"code": self.code, "message": message, **extra}
        super().__init__(status_code=status_code or type(self).status_code, detail=detail)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# --- Validation ---------------------------------------------------------------

class ValidationFailed(ServiceError):
    code = "validation_failed"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str = "Validation failed", errors: Optional[dict] = None):
        super().__init__(message, errors=errors or {})


class InvalidLicenseFormat(ServiceError):
    code = "invalid_license_format"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, license_number: str):
        super().__init__(
            f"License number {license_number!r} does not match any known council format",
            license_number=license_number,
        )


class MissingRequiredDocuments(ServiceError):
    code = "missing_required_documents"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, missing: Iterable[str]):
        missing = list(missing)
        super().__init__(f"Missing required documents: {', '.join(missing)}", missing=missing)


# --- State conflicts ----------------------------------------------------------

class InvalidStateTransition(ServiceError):
    code = "invalid_state_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current_status: str, required_status: Any):
        if isinstance(required_status, (list, tuple, set, frozenset)):
            required = sorted(str(s) for s in required_status)
        else:
            required = [str(required_status)]
        super().__init__(
            f"Operation requires status {' or '.join(required)}, record is {current_status}",
            current_status=str(current_status),
            required_status=required,
        )


class DuplicateVerification(ServiceError):
    code = "duplicate_verification"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "A verification record already exists for this account"):
        super().__init__(message)


class DuplicateLicenseNumber(ServiceError):
    code = "duplicate_license_number"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, license_number: str):
        super().__init__(
            "License number is already bound to another verification record",
            license_number=license_number,
        )


class AppealAlreadySubmitted(ServiceError):
    code = "appeal_already_submitted"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "An appeal has already been submitted for this verification"):
        super().__init__(message)


class AlreadyQueued(ServiceError):
    code = "already_queued"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, queue_id: Optional[int] = None):
        super().__init__("Patient already has an active queue entry", queue_id=queue_id)


class QueueFull(ServiceError):
    code = "queue_full"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, doctor_id: int, max_queue_size: int):
        super().__init__(
            "Doctor's queue is full",
            doctor_id=doctor_id,
            max_queue_size=max_queue_size,
        )


class DoctorNotAvailable(ServiceError):
    code = "doctor_not_available"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, doctor_id: int):
        super().__init__("Doctor is not accepting queue entries", doctor_id=doctor_id)


class InvalidQueueTransition(ServiceError):
    code = "invalid_queue_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current_status: str, target_status: str):
        super().__init__(
            f"Queue entry cannot move from {current_status} to {target_status}",
            current_status=current_status,
            target_status=target_status,
        )


# --- Not found ----------------------------------------------------------------

class VerificationNotFound(ServiceError):
    code = "verification_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Verification record not found"):
        super().__init__(message)


class DocumentNotFound(ServiceError):
    code = "document_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, document_id: int):
        super().__init__("Document not found", document_id=document_id)


class QueueEntryNotFound(ServiceError):
    code = "queue_entry_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Active queue entry not found"):
        super().__init__(message)


# --- External dependencies ----------------------------------------------------

class RateLimited(ServiceError):
    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, authority: str, retry_after: int):
        super().__init__(
            f"Rate limit exceeded for {authority}. Please try again later.",
            authority=authority,
            retry_after=retry_after,
        )


class TooManyRequests(ServiceError):
    code = "too_many_requests"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after: int):
        super().__init__("Too many requests. Please slow down.", retry_after=retry_after)
