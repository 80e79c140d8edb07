from celery import Celery
from celery.schedules import crontab

from tellersync.core.config import settings

celery_app = Celery(
    "tellersync",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# ─── Scheduled tasks ──────────────────────────
celery_app.conf.beat_schedule = {
    "sync-delta-all-enrollments": {
        "task": "tellersync.services.sync.sync_all_enrollments",
        "schedule": crontab(minute=f"*/{settings.sync_delta_interval_minutes}"),
    },
}

# Explicitly include task modules so the worker registers them on startup.
celery_app.conf.include = [
    "tellersync.services.sync",
]
