"""Models package."""

__all__ = [
    "user",
    "doctor",
    "verification",
    "document",
    "queue",
    "audit",
]
