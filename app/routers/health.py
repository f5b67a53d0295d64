"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.cache.cache_service import redis_cache
from app.core.config import settings
from app.core.database import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception:
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "env": settings.ENV,
        "database": database,
        "cache": "ok" if await redis_cache.ping() else "unavailable",
    }
