from celery import Celery
from celery.schedules import crontab

from app.core.config import settings
from app.core.logger import setup_logging

setup_logging()

celery_app = Celery(
    "healthq",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.tasks.verification_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Kolkata",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    worker_max_tasks_per_child=1000,
)

celery_app.conf.beat_schedule = {
    "release-stale-automated-verifications": {
        "task": "app.tasks.verification_tasks.release_stale_verifications",
        "schedule": crontab(minute="*/10"),
    },
    "reassess-due-doctors": {
        "task": "app.tasks.verification_tasks.reassess_due_doctors",
        "schedule": crontab(minute=0, hour="*/6"),
    },
}
