"""Tests for Celery background tasks."""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.orm import sessionmaker

from training_api.celery_app import celery_app
from training_api.config import settings
from training_api.db.models import NotificationStatus, ScheduledNotification
from training_api.services.notification_service import utcnow
from training_api.tasks.notifications import dispatch_due_notifications


@pytest.fixture()
def task_session_factory(db_session):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=db_session.bind)
    sessions: list = []

    def create_session():
        session = factory()
        sessions.append(session)
        return session

    try:
        yield create_session
    finally:
        for session in sessions:
            session.close()


def test_beat_schedule_dispatches_notifications():
    entry = celery_app.conf.beat_schedule["dispatch-due-notifications"]

    assert entry["task"] == "training_api.tasks.notifications.dispatch_due_notifications"


def test_dispatch_due_notifications_delivers_due_rows(
    task_session_factory, db_session, student, add_subscription, add_notification
):
    add_subscription(student, "https://push.example.com/phone")
    due = add_notification(student, utcnow() - timedelta(seconds=5))
    later = add_notification(student, utcnow() + timedelta(hours=1))

    with patch("training_api.tasks.notifications.SessionLocal", task_session_factory), patch(
        "training_api.services.push_delivery.webpush", return_value=MagicMock(status_code=201)
    ) as mock_webpush:
        result = dispatch_due_notifications.run()

    assert result["claimed"] == 1
    assert result["sent"] == 1
    assert result["skipped"] is False
    mock_webpush.assert_called_once()

    db_session.expire_all()
    assert db_session.get(ScheduledNotification, due.id).status == NotificationStatus.SENT.value
    assert db_session.get(ScheduledNotification, later.id).status == NotificationStatus.PENDING.value


def test_dispatch_due_notifications_without_due_rows(task_session_factory, student, add_notification):
    add_notification(student, utcnow() + timedelta(hours=1))

    with patch("training_api.tasks.notifications.SessionLocal", task_session_factory), patch(
        "training_api.services.push_delivery.webpush"
    ) as mock_webpush:
        result = dispatch_due_notifications.run()

    assert result == {
        "claimed": 0,
        "sent": 0,
        "errored": 0,
        "released": 0,
        "failed_records": 0,
        "skipped": False,
    }
    mock_webpush.assert_not_called()


def test_dispatch_due_notifications_waits_for_vapid_keys(
    task_session_factory, db_session, student, add_subscription, add_notification
):
    add_subscription(student, "https://push.example.com/phone")
    due = add_notification(student, utcnow() - timedelta(seconds=5))

    with patch.object(settings, "VAPID_PRIVATE_KEY", None), patch(
        "training_api.tasks.notifications.SessionLocal", task_session_factory
    ), patch("training_api.services.push_delivery.webpush") as mock_webpush:
        result = dispatch_due_notifications.run()

    assert result["skipped"] is True
    assert result["claimed"] == 0
    mock_webpush.assert_not_called()

    db_session.expire_all()
    stored = db_session.get(ScheduledNotification, due.id)
    assert stored.status == NotificationStatus.PENDING.value
    assert stored.attempts == 0
