import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.exceptions import HTTPException as FastAPIHTTPException

from app.cache.cache_service import redis_cache
from app.core.config import settings
from app.core.logger import setup_logging
from app.middleware.cors import configure_cors
from app.middleware.logging import RequestLoggerMiddleware
from app.middleware import error_handler
from app.services.notification_service import notifier

# Routers
from app.routers import admin as admin_router
from app.routers import events_ws as events_ws_router
from app.routers import health as health_router
from app.routers import queue as queue_router
from app.routers import verification as verification_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Worker-side events reach this process over Redis pub/sub
    relay = asyncio.create_task(notifier.relay()) if settings.EVENTS_RELAY_ENABLED else None
    yield
    if relay is not None:
        relay.cancel()
        with suppress(asyncio.CancelledError):
            await relay
    await redis_cache.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    setup_logging()
    description = (
        "HealthQ Backend API.\n\n"
        "This service provides doctor credential verification and real-time walk-in queue endpoints."
    )

    openapi_tags = [
        {"name": "doctor-verification", "description": "Doctor registration, document upload, status and appeals."},
        {"name": "admin", "description": "Verification review, decisions and risk statistics."},
        {"name": "queue", "description": "Walk-in queue for clinic visits."},
        {"name": "events-ws", "description": "Realtime event stream."},
        {"name": "health", "description": "Health checks and service status endpoints."},
    ]

    app = FastAPI(
        title="HealthQ Backend API",
        version="0.1.0",
        description=description,
        openapi_tags=openapi_tags,
        lifespan=lifespan,
    )

    # Middleware
    configure_cors(app)
    app.add_middleware(RequestLoggerMiddleware)

    # Exception handlers
    app.add_exception_handler(FastAPIHTTPException, error_handler.http_exception_handler)

    # Include routers
    app.include_router(health_router.router)
    app.include_router(verification_router.router)
    app.include_router(admin_router.router)
    app.include_router(queue_router.router)
    app.include_router(events_ws_router.router)

    return app


app = create_app()
