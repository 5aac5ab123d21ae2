"""Celery tasks for scheduled push notifications."""
from __future__ import annotations

import asyncio

from loguru import logger

from training_api.celery_app import celery_app
from training_api.config import settings
from training_api.db.session import SessionLocal
from training_api.services.push_delivery import PushConfig
from training_api.services.scheduler import TickSummary, build_notification_scheduler


@celery_app.task(name="training_api.tasks.notifications.dispatch_due_notifications")
def dispatch_due_notifications() -> dict[str, int | bool]:
    """Run one dispatch tick: claim due notifications, deliver them, record outcomes."""

    if not PushConfig.from_settings(settings).is_configured:
        logger.warning(
            "VAPID keys not found in environment variables. "
            "Scheduled notifications stay pending until they are configured."
        )
        return TickSummary(skipped=True).as_dict()

    scheduler = build_notification_scheduler(SessionLocal, settings)
    try:
        summary = asyncio.run(scheduler.run_tick())
    except Exception as exc:
        logger.error("Notification dispatch task failed", error=str(exc))
        raise
    finally:
        scheduler.dispatcher.close()

    if summary.claimed:
        logger.info("Notification dispatch task completed", **summary.as_dict())
    return summary.as_dict()
