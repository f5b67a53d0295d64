"""Pytest fixtures for async FastAPI testing.

Loads `.env.test` before any app module reads settings, initializes a clean
SQLite schema, and provides an `AsyncClient` over the ASGI app. Celery task
scheduling and the Redis connection are replaced with in-memory fakes so
tests don't need a broker or a Redis server.
"""
import itertools
import pathlib
import uuid
from datetime import date
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from dotenv import load_dotenv

from helpers import confirming_handler, registry_with

ROOT = pathlib.Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=str(ROOT / ".env.test"), override=True)


@pytest.fixture(scope="session")
def prepare_database():
    """Create clean schema for the test session."""
    from app.core.database import engine, Base

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield

    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables(prepare_database):
    """Empty every table after each test."""
    yield
    from app.core.database import engine, Base

    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session(prepare_database):
    """Yield a SQLAlchemy session for direct DB access in tests."""
    from app.core.database import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeRedis:
    """Just enough of `redis.asyncio.Redis` for the cache wrapper."""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    async def ping(self):
        return True

    async def close(self):
        pass


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    from app.cache.cache_service import redis_cache

    fake = FakeRedis()
    monkeypatch.setattr(redis_cache, "redis", fake)
    return fake


@pytest.fixture(autouse=True)
def scheduled_tasks(monkeypatch):
    """Record Celery `apply_async` calls instead of talking to a broker."""
    from app.core.celery_app import celery_app
    from app.tasks import verification_tasks

    ids = itertools.count(1)
    calls = []

    def fake_apply_async(name):
        def _apply_async(args=None, kwargs=None, countdown=None, **options):
            task_id = f"{name}-{next(ids)}"
            calls.append(SimpleNamespace(name=name, args=args, countdown=countdown, id=task_id))
            return SimpleNamespace(id=task_id)
        return _apply_async

    for name in ("run_automated_verification_task", "retry_account_activation", "resync_license_task"):
        monkeypatch.setattr(getattr(verification_tasks, name), "apply_async", fake_apply_async(name))
    monkeypatch.setattr(celery_app.control, "revoke", MagicMock())
    return calls


@pytest.fixture(autouse=True)
def published_events(monkeypatch):
    """Capture events published for the relay instead of hitting Redis pub/sub."""
    from app.services.notification_service import notifier

    envelopes = []
    monkeypatch.setattr(notifier, "publisher", envelopes.append)
    return envelopes


@pytest.fixture
def make_user(db_session):
    """Factory for accounts of any type."""
    from app.models.user import User

    def _make(user_type="doctor", **overrides):
        suffix = uuid.uuid4().hex[:8]
        fields = {
            "email": f"{user_type}-{suffix}@example.com",
            "phone": None,
            "first_name": user_type.title(),
            "last_name": suffix,
            "user_type": user_type,
            "status": "active" if user_type != "doctor" else "pending",
            "is_verified": True,
        }
        fields.update(overrides)
        user = User(**fields)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def doctor_user(make_user):
    """A doctor candidate with clean, consistent profile data."""
    return make_user(
        "doctor",
        first_name="Asha",
        last_name="Menon",
        phone="+919876543210",
        city="Kochi",
        state="Kerala",
        address="12 MG Road, Kochi",
        date_of_birth=date(1985, 3, 14),
        gender="female",
    )


@pytest.fixture
def admin_user(make_user):
    return make_user("admin", first_name="Admin", last_name="User")


@pytest.fixture
def make_doctor(db_session, make_user):
    """Factory for an activated, queueable doctor profile."""
    from app.models.doctor import Doctor

    def _make(**overrides):
        user = make_user("doctor", status="active", is_active=True)
        fields = {
            "user_id": user.id,
            "specialization": "General Medicine",
            "is_available": True,
            "avg_consultation_minutes": 15,
            "max_queue_size": 50,
        }
        fields.update(overrides)
        doctor = Doctor(**fields)
        db_session.add(doctor)
        db_session.commit()
        db_session.refresh(doctor)
        return doctor

    return _make


@pytest.fixture
def confirming_registry():
    return registry_with(confirming_handler)


@pytest.fixture
async def async_client(prepare_database):
    """Provide an httpx AsyncClient configured with the FastAPI app."""
    from app.main import create_app

    app = create_app()

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
