"""Helper utilities (timestamps, request helpers)."""
from datetime import datetime, timezone

from fastapi import Request


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def minutes_between(start: datetime, end: datetime) -> int:
    return max(0, int(round((end - start).total_seconds() / 60)))

def get_client_ip(request: Request) -> str:
    """Return client's IP address from request headers or connection info.

    Checks `X-Forwarded-For` first (comma-separated), then falls back to
    `request.client.host`. Returns 'unknown' if not found.
    """
    x_forwarded_for = request.headers.get("x-forwarded-for")
    if x_forwarded_for:
        # X-Forwarded-For can contain a list of IPs
        return x_forwarded_for.split(",")[0].strip()

    client = getattr(request, "client", None)
    if client and getattr(client, "host", None):
        return client.host

    return "unknown"
