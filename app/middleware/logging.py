"""Access logging: one line per request with status and latency."""
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.utils.helpers import get_client_ip

logger = logging.getLogger("app.access")

QUIET_PATHS = {"/health"}


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"{request.method} {request.url.path} failed from {get_client_ip(request)}")
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.url.path} {response.status_code} "
            f"{elapsed_ms:.1f}ms client={get_client_ip(request)}",
        )
        return response
