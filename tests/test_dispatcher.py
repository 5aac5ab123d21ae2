from __future__ import annotations

import json
import threading
import time

import pytest

from training_api.db.models import (
    DeliveryOutcome,
    NotificationDelivery,
    NotificationStatus,
    PushSubscription,
    ScheduledNotification,
)
from training_api.services.dispatcher import DeliveryDispatcher, DispatchJob
from training_api.services.push_delivery import (
    PushConfig,
    PushDeliveryError,
    PushGoneError,
    PushTarget,
)

from tests.conftest import NOW


class StubSender:
    """Answers per endpoint: an int status code, an exception, or a delay in seconds."""

    def __init__(self, push_config, responses=None):
        self.config = push_config
        self.responses = responses or {}
        self.calls: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def send(self, target, payload_json):
        with self._lock:
            self.calls.append((target.endpoint, json.loads(payload_json)))
        response = self.responses.get(target.endpoint, 201)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, float):
            time.sleep(response)
            return 201
        return response


def _target(subscription: PushSubscription) -> PushTarget:
    return PushTarget(
        subscription_id=subscription.id,
        endpoint=subscription.endpoint,
        p256dh=subscription.p256dh,
        auth=subscription.auth,
    )


def _job(notification: ScheduledNotification, subscriptions) -> DispatchJob:
    return DispatchJob(
        notification_id=notification.id,
        user_id=notification.user_id,
        payload=dict(notification.payload),
        targets=[_target(item) for item in subscriptions],
    )


@pytest.mark.asyncio
async def test_send_without_targets_is_error(push_config, student, add_notification):
    sender = StubSender(push_config)
    dispatcher = DeliveryDispatcher(sender)
    notification = add_notification(student, NOW, status=NotificationStatus.PROCESSING)

    result = await dispatcher.send(_job(notification, []))

    assert result.status is NotificationStatus.ERROR
    assert result.endpoints == []
    assert sender.calls == []


@pytest.mark.asyncio
async def test_one_gone_endpoint_does_not_affect_the_others(
    push_config, db_session, student, add_subscription, add_notification
):
    phone = add_subscription(student, "https://push.example.com/phone")
    laptop = add_subscription(student, "https://push.example.com/laptop")
    tablet = add_subscription(student, "https://push.example.com/tablet")
    sender = StubSender(push_config, {laptop.endpoint: PushGoneError(laptop.endpoint, 410)})
    dispatcher = DeliveryDispatcher(sender)
    notification = add_notification(student, NOW, status=NotificationStatus.PROCESSING)

    result = await dispatcher.send(_job(notification, [phone, laptop, tablet]))

    assert result.status is NotificationStatus.SENT
    assert len(sender.calls) == 3
    assert all(payload["title"] == "Rest over" for _, payload in sender.calls)
    assert result.count(DeliveryOutcome.DELIVERED) == 2
    assert result.count(DeliveryOutcome.GONE) == 1

    assert dispatcher.record(db_session, result) is True

    db_session.expire_all()
    remaining = {item.endpoint for item in db_session.query(PushSubscription)}
    assert remaining == {phone.endpoint, tablet.endpoint}
    stored = db_session.get(ScheduledNotification, notification.id)
    assert stored.status == NotificationStatus.SENT.value
    assert stored.processed_at is not None
    outcomes = {
        item.endpoint: item.outcome
        for item in db_session.query(NotificationDelivery).filter_by(notification_id=notification.id)
    }
    assert outcomes == {
        phone.endpoint: "delivered",
        laptop.endpoint: "gone",
        tablet.endpoint: "delivered",
    }


@pytest.mark.asyncio
async def test_all_endpoints_failing_still_marks_sent(
    push_config, db_session, student, add_subscription, add_notification
):
    phone = add_subscription(student, "https://push.example.com/phone")
    sender = StubSender(push_config, {phone.endpoint: PushDeliveryError("server error", 503)})
    dispatcher = DeliveryDispatcher(sender)
    notification = add_notification(student, NOW, status=NotificationStatus.PROCESSING)

    result = await dispatcher.send(_job(notification, [phone]))
    dispatcher.record(db_session, result)

    db_session.expire_all()
    assert db_session.get(ScheduledNotification, notification.id).status == "sent"
    delivery = db_session.query(NotificationDelivery).one()
    assert delivery.outcome == DeliveryOutcome.FAILED.value
    assert delivery.status_code == 503
    assert delivery.error == "server error"
    assert db_session.query(PushSubscription).count() == 1


@pytest.mark.asyncio
async def test_slow_endpoint_times_out(push_config, student, add_subscription, add_notification):
    slow = add_subscription(student, "https://push.example.com/slow")
    fast = add_subscription(student, "https://push.example.com/fast")
    dispatcher = DeliveryDispatcher(
        StubSender(push_config, {slow.endpoint: 0.5}), timeout_seconds=0.05
    )
    notification = add_notification(student, NOW, status=NotificationStatus.PROCESSING)

    result = await dispatcher.send(_job(notification, [slow, fast]))

    outcomes = {item.target.endpoint: item for item in result.endpoints}
    assert outcomes[slow.endpoint].outcome is DeliveryOutcome.FAILED
    assert "timed out" in outcomes[slow.endpoint].error
    assert outcomes[fast.endpoint].outcome is DeliveryOutcome.DELIVERED


@pytest.mark.asyncio
async def test_record_is_applied_once(
    push_config, db_session, student, add_subscription, add_notification
):
    phone = add_subscription(student, "https://push.example.com/phone")
    dispatcher = DeliveryDispatcher(StubSender(push_config))
    notification = add_notification(student, NOW, status=NotificationStatus.PROCESSING)
    result = await dispatcher.send(_job(notification, [phone]))

    assert dispatcher.record(db_session, result) is True
    assert dispatcher.record(db_session, result) is False

    assert db_session.query(NotificationDelivery).count() == 1


@pytest.mark.asyncio
async def test_record_does_not_overwrite_cancelled_row(
    push_config, db_session, student, add_subscription, add_notification
):
    phone = add_subscription(student, "https://push.example.com/phone")
    dispatcher = DeliveryDispatcher(StubSender(push_config))
    notification = add_notification(student, NOW, status=NotificationStatus.CANCELLED)
    result = await dispatcher.send(_job(notification, [phone]))

    assert dispatcher.record(db_session, result) is False

    db_session.expire_all()
    assert db_session.get(ScheduledNotification, notification.id).status == "cancelled"
    assert db_session.query(NotificationDelivery).count() == 0


@pytest.mark.asyncio
async def test_missing_vapid_keys_release_the_claim(db_session, student, add_subscription, add_notification):
    phone = add_subscription(student, "https://push.example.com/phone")
    sender = StubSender(PushConfig(vapid_subject="mailto:tests@example.com"))
    dispatcher = DeliveryDispatcher(sender, timeout_seconds=1.0)
    notification = add_notification(
        student, NOW, status=NotificationStatus.PROCESSING, claimed_at=NOW
    )

    result = await dispatcher.send(_job(notification, [phone]))

    assert result.status is NotificationStatus.PENDING
    assert sender.calls == []
    assert dispatcher.record(db_session, result) is True

    db_session.expire_all()
    stored = db_session.get(ScheduledNotification, notification.id)
    assert stored.status == NotificationStatus.PENDING.value
    assert stored.claimed_at is None
    assert stored.processed_at is None
    assert db_session.query(NotificationDelivery).count() == 0
    assert db_session.query(PushSubscription).count() == 1


@pytest.mark.asyncio
async def test_busy_workers_do_not_time_out_waiting_endpoints(
    push_config, student, add_subscription, add_notification
):
    slow_a = add_subscription(student, "https://push.example.com/slow-a")
    slow_b = add_subscription(student, "https://push.example.com/slow-b")
    fast = add_subscription(student, "https://push.example.com/fast")
    sender = StubSender(push_config, {slow_a.endpoint: 0.5, slow_b.endpoint: 0.5})
    dispatcher = DeliveryDispatcher(sender, timeout_seconds=0.2, max_workers=2)
    notification = add_notification(student, NOW, status=NotificationStatus.PROCESSING)

    try:
        result = await dispatcher.send(_job(notification, [slow_a, slow_b, fast]))
    finally:
        dispatcher.close()

    outcomes = {item.target.endpoint: item.outcome for item in result.endpoints}
    assert outcomes == {
        slow_a.endpoint: DeliveryOutcome.FAILED,
        slow_b.endpoint: DeliveryOutcome.FAILED,
        fast.endpoint: DeliveryOutcome.DELIVERED,
    }
    assert fast.endpoint in [endpoint for endpoint, _ in sender.calls]
