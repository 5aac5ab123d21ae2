"""Celery application instance and configuration."""
from __future__ import annotations

from celery import Celery

from training_api.config import settings


def _resolve_broker_url() -> str:
    if settings.CELERY_BROKER_URL is not None:
        return str(settings.CELERY_BROKER_URL)
    return str(settings.REDIS_URL)


def _resolve_result_backend() -> str:
    if settings.CELERY_RESULT_BACKEND is not None:
        return str(settings.CELERY_RESULT_BACKEND)
    return str(settings.REDIS_URL)


celery_app = Celery(
    "personal_training",
    broker=_resolve_broker_url(),
    backend=_resolve_result_backend(),
    include=["training_api.tasks.notifications"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    result_expires=3600,
)

# Alternative to the in-process loop: run beat with RUN_NOTIFICATION_SCHEDULER=false.
celery_app.conf.beat_schedule = {
    "dispatch-due-notifications": {
        "task": "training_api.tasks.notifications.dispatch_due_notifications",
        "schedule": settings.NOTIFICATION_TICK_SECONDS,
        "options": {"expires": max(settings.NOTIFICATION_TICK_SECONDS * 5, 5)},
    },
}

__all__ = ["celery_app"]
