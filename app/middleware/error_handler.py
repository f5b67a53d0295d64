"""Global error handlers for the application."""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.utils.errors import RateLimited, ServiceError, TooManyRequests

logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc):
    headers = getattr(exc, "headers", None)
    if isinstance(exc, (RateLimited, TooManyRequests)):
        headers = {**(headers or {}), "Retry-After": str(exc.extra.get("retry_after", 60))}
    if isinstance(exc, ServiceError):
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)
