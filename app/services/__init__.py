"""Service layer package."""

__all__ = [
    "account_service",
    "connection_manager",
    "license_registry_service",
    "notification_service",
    "queue_service",
    "risk_assessment_service",
    "verification_service",
]
