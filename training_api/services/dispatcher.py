"""Fan-out delivery of a claimed notification to every device of its owner."""
from __future__ import annotations

import asyncio
import json
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session

from training_api.db.models.notification import (
    DeliveryOutcome,
    NotificationDelivery,
    NotificationStatus,
    ScheduledNotification,
)
from training_api.services.notification_service import utcnow
from training_api.services.push_delivery import (
    PushGoneError,
    PushTarget,
    WebPushSender,
)
from training_api.services.push_subscriptions import PushSubscriptionService


@dataclass(slots=True)
class DispatchJob:
    """Everything needed to deliver one claimed notification without a DB session."""

    notification_id: int
    user_id: uuid.UUID
    payload: dict[str, Any]
    targets: list[PushTarget] = field(default_factory=list)


@dataclass(slots=True)
class EndpointResult:
    target: PushTarget
    outcome: DeliveryOutcome
    status_code: int | None = None
    error: str | None = None
    attempted_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class DispatchResult:
    """Outcome of one job. ``PENDING`` means the claim is handed back untouched."""

    notification_id: int
    status: NotificationStatus
    endpoints: list[EndpointResult] = field(default_factory=list)

    def count(self, outcome: DeliveryOutcome) -> int:
        return sum(1 for item in self.endpoints if item.outcome is outcome)


class DeliveryDispatcher:
    """Deliver notifications to all registered endpoints and reconcile the outcome.

    The row is marked ``sent`` as soon as at least one endpoint was tried,
    whatever the individual outcomes; the per-endpoint outcomes land in the
    delivery log. A user without endpoints gets ``error``. Without VAPID
    credentials nothing is attempted and the row goes back to ``pending``.

    Sends run on a private thread pool. A send only starts its timeout once
    it holds one of ``max_workers`` slots, and the slot is freed when the
    thread returns, so slow endpoints cannot make queued ones time out.
    """

    def __init__(
        self,
        sender: WebPushSender,
        *,
        timeout_seconds: float | None = None,
        max_workers: int = 16,
    ):
        self.sender = sender
        self.timeout_seconds = timeout_seconds or sender.config.timeout_seconds
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webpush")
        self._slots = asyncio.Semaphore(max_workers)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    async def send(self, job: DispatchJob) -> DispatchResult:
        """Attempt delivery to every target of ``job`` concurrently."""

        if not self.sender.config.is_configured:
            logger.warning(
                "VAPID keys are not configured, releasing notification",
                notification_id=job.notification_id,
            )
            return DispatchResult(job.notification_id, NotificationStatus.PENDING)

        if not job.targets:
            logger.warning(
                "No push subscriptions for notification",
                notification_id=job.notification_id,
                user_id=str(job.user_id),
            )
            return DispatchResult(job.notification_id, NotificationStatus.ERROR)

        payload_json = json.dumps(job.payload)
        endpoints = await asyncio.gather(
            *(self._send_one(job, target, payload_json) for target in job.targets)
        )
        return DispatchResult(job.notification_id, NotificationStatus.SENT, list(endpoints))

    async def _run_in_slot(self, target: PushTarget, payload_json: str) -> int | None:
        await self._slots.acquire()
        future = asyncio.get_running_loop().run_in_executor(
            self._executor, self.sender.send, target, payload_json
        )
        future.add_done_callback(self._release_slot)
        return await asyncio.wait_for(asyncio.shield(future), timeout=self.timeout_seconds)

    def _release_slot(self, future: asyncio.Future) -> None:
        self._slots.release()
        if not future.cancelled():
            # Retrieved here too, for sends that finish after their caller timed out.
            future.exception()

    async def _send_one(self, job: DispatchJob, target: PushTarget, payload_json: str) -> EndpointResult:
        endpoint_short = target.endpoint[:60]
        try:
            status_code = await self._run_in_slot(target, payload_json)
        except PushGoneError as exc:
            logger.info(
                "Push subscription expired",
                notification_id=job.notification_id,
                subscription_id=target.subscription_id,
                endpoint=endpoint_short,
                status_code=exc.status_code,
            )
            return EndpointResult(target, DeliveryOutcome.GONE, exc.status_code, str(exc))
        except asyncio.TimeoutError:
            logger.warning(
                "Push delivery timed out",
                notification_id=job.notification_id,
                subscription_id=target.subscription_id,
                endpoint=endpoint_short,
                timeout=self.timeout_seconds,
            )
            return EndpointResult(
                target, DeliveryOutcome.FAILED, error=f"timed out after {self.timeout_seconds}s"
            )
        except Exception as exc:
            logger.error(
                "Push delivery failed",
                notification_id=job.notification_id,
                subscription_id=target.subscription_id,
                endpoint=endpoint_short,
                error=str(exc),
            )
            return EndpointResult(
                target,
                DeliveryOutcome.FAILED,
                getattr(exc, "status_code", None),
                str(exc),
            )

        return EndpointResult(target, DeliveryOutcome.DELIVERED, status_code)

    def record(self, db: Session, result: DispatchResult) -> bool:
        """Persist ``result``: prune gone endpoints, log attempts, write the new status.

        The status is written only while the row is still ``processing``, so
        recording the same result twice is harmless. A ``PENDING`` result
        clears the claim so the next tick picks the row up again. Returns
        whether this call performed the transition.
        """

        gone_ids = [
            item.target.subscription_id
            for item in result.endpoints
            if item.outcome is DeliveryOutcome.GONE
        ]
        removed = PushSubscriptionService(db).remove(gone_ids)

        values: dict = {ScheduledNotification.status: result.status.value}
        if result.status is NotificationStatus.PENDING:
            values[ScheduledNotification.claimed_at] = None
        else:
            values[ScheduledNotification.processed_at] = utcnow()

        transitioned = (
            db.query(ScheduledNotification)
            .filter(
                ScheduledNotification.id == result.notification_id,
                ScheduledNotification.status == NotificationStatus.PROCESSING.value,
            )
            .update(values, synchronize_session=False)
        )
        if transitioned:
            db.add_all(
                NotificationDelivery(
                    notification_id=result.notification_id,
                    endpoint=item.target.endpoint,
                    outcome=item.outcome.value,
                    status_code=item.status_code,
                    error=item.error,
                    attempted_at=item.attempted_at,
                )
                for item in result.endpoints
            )
        db.commit()

        if not transitioned:
            logger.warning(
                "Notification no longer in flight, outcome not recorded",
                notification_id=result.notification_id,
                status=result.status.value,
            )
            return False

        logger.info(
            "Notification processed",
            notification_id=result.notification_id,
            status=result.status.value,
            delivered=result.count(DeliveryOutcome.DELIVERED),
            failed=result.count(DeliveryOutcome.FAILED),
            removed_subscriptions=removed,
        )
        return True
