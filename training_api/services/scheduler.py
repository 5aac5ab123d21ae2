"""Periodic dispatch of due notifications.

Each tick runs in three phases so that no database session is held across an
``await``:

1. claim: due rows are moved from ``pending`` to ``processing`` one by one
   with a conditional UPDATE; only rows this tick actually moved are kept,
   together with a snapshot of their owner's subscriptions;
2. send: every claimed notification is fanned out concurrently;
3. record: each outcome is written in its own session, so one failing row
   does not prevent the others from being recorded.

Claim and record run in worker threads so the event loop serving requests
is never blocked on the database.

A row left in ``processing`` (crash, failed record) becomes claimable again
once its claim is older than the lease, which makes delivery at-least-once.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session, sessionmaker

from training_api.config import Settings, settings as default_settings
from training_api.db.models.notification import NotificationStatus, ScheduledNotification
from training_api.db.models.push_subscription import PushSubscription
from training_api.services.dispatcher import DeliveryDispatcher, DispatchJob, DispatchResult
from training_api.services.notification_service import as_utc, utcnow
from training_api.services.push_delivery import PushConfig, PushTarget, WebPushSender

TICK_JOB_ID = "dispatch-due-notifications"


@dataclass(slots=True)
class TickSummary:
    claimed: int = 0
    sent: int = 0
    errored: int = 0
    released: int = 0
    failed_records: int = 0
    skipped: bool = False

    def as_dict(self) -> dict[str, int | bool]:
        return {
            "claimed": self.claimed,
            "sent": self.sent,
            "errored": self.errored,
            "released": self.released,
            "failed_records": self.failed_records,
            "skipped": self.skipped,
        }


class NotificationScheduler:
    """Single-flight polling loop over the scheduled notification table.

    ``start()`` registers the tick as an interval job on an APScheduler
    ``AsyncIOScheduler`` (one instance at a time, missed runs coalesced);
    ``run_tick()`` can also be driven directly, e.g. from Celery beat.
    """

    def __init__(
        self,
        dispatcher: DeliveryDispatcher,
        session_factory: sessionmaker | Callable[[], Session],
        *,
        interval_seconds: float = 1.0,
        batch_size: int = 100,
        lease_seconds: float = 300,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.lease = timedelta(seconds=lease_seconds)
        self.clock = clock
        self.last_summary: TickSummary | None = None
        self._tick_lock = asyncio.Lock()
        self._scheduler: AsyncIOScheduler | None = None
        self._inflight: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Claim phase
    # ------------------------------------------------------------------
    def _claimable(self, now: datetime):
        return or_(
            and_(
                ScheduledNotification.status == NotificationStatus.PENDING.value,
                ScheduledNotification.send_at <= now,
            ),
            and_(
                ScheduledNotification.status == NotificationStatus.PROCESSING.value,
                ScheduledNotification.claimed_at < now - self.lease,
            ),
        )

    def claim_due(self, db: Session, now: datetime | None = None) -> list[DispatchJob]:
        """Claim up to ``batch_size`` due notifications and build their dispatch jobs."""

        now = as_utc(now or self.clock())
        candidate_ids = list(
            db.scalars(
                select(ScheduledNotification.id)
                .where(self._claimable(now))
                .order_by(ScheduledNotification.send_at, ScheduledNotification.id)
                .limit(self.batch_size)
            )
        )
        if not candidate_ids:
            return []

        claimed_ids: list[int] = []
        for notification_id in candidate_ids:
            updated = (
                db.query(ScheduledNotification)
                .filter(ScheduledNotification.id == notification_id, self._claimable(now))
                .update(
                    {
                        ScheduledNotification.status: NotificationStatus.PROCESSING.value,
                        ScheduledNotification.claimed_at: now,
                        ScheduledNotification.attempts: ScheduledNotification.attempts + 1,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if updated:
                claimed_ids.append(notification_id)

        if not claimed_ids:
            return []

        notifications = list(
            db.scalars(
                select(ScheduledNotification)
                .where(ScheduledNotification.id.in_(claimed_ids))
                .order_by(ScheduledNotification.send_at, ScheduledNotification.id)
            )
        )
        user_ids = {notification.user_id for notification in notifications}
        targets: dict = {user_id: [] for user_id in user_ids}
        for subscription in db.scalars(
            select(PushSubscription)
            .where(PushSubscription.user_id.in_(list(user_ids)))
            .order_by(PushSubscription.id)
        ):
            targets[subscription.user_id].append(
                PushTarget(
                    subscription_id=subscription.id,
                    endpoint=subscription.endpoint,
                    p256dh=subscription.p256dh,
                    auth=subscription.auth,
                )
            )

        logger.info("Claimed due notifications", count=len(notifications))
        return [
            DispatchJob(
                notification_id=notification.id,
                user_id=notification.user_id,
                payload=dict(notification.payload),
                targets=list(targets[notification.user_id]),
            )
            for notification in notifications
        ]

    def _claim(self, now: datetime | None) -> list[DispatchJob]:
        with self.session_factory() as db:
            return self.claim_due(db, now)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    async def run_tick(self, now: datetime | None = None) -> TickSummary:
        """Claim, dispatch and record due notifications once.

        A call made while another tick of this scheduler is running returns
        immediately with ``skipped=True``.
        """

        if self._tick_lock.locked():
            logger.debug("Previous notification tick still running, skipping")
            return TickSummary(skipped=True)

        async with self._tick_lock:
            jobs = await asyncio.to_thread(self._claim, now)
            summary = TickSummary(claimed=len(jobs))
            if not jobs:
                self.last_summary = summary
                return summary

            results = await asyncio.gather(
                *(self.dispatcher.send(job) for job in jobs), return_exceptions=True
            )

            for job, result in zip(jobs, results):
                if isinstance(result, BaseException):
                    logger.opt(exception=result).error(
                        "Notification dispatch crashed", notification_id=job.notification_id
                    )
                    summary.failed_records += 1
                    continue
                if not await asyncio.to_thread(self._record, result):
                    summary.failed_records += 1
                elif result.status is NotificationStatus.SENT:
                    summary.sent += 1
                elif result.status is NotificationStatus.PENDING:
                    summary.released += 1
                else:
                    summary.errored += 1

            logger.info("Notification tick completed", **summary.as_dict())
            self.last_summary = summary
            return summary

    def _record(self, result: DispatchResult) -> bool:
        with self.session_factory() as db:
            try:
                return self.dispatcher.record(db, result)
            except Exception:
                db.rollback()
                logger.exception(
                    "Failed to record notification outcome", notification_id=result.notification_id
                )
                return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Schedule the tick on the running event loop, first run immediately."""

        if self.running:
            return
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1},
            timezone=timezone.utc,
        )
        self._scheduler.add_job(
            self._scheduled_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=TICK_JOB_ID,
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Notification scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop scheduling ticks and wait for the one in flight, if any."""

        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None

        inflight, self._inflight = self._inflight, None
        if inflight is not None and not inflight.done():
            try:
                await inflight
            except Exception:
                logger.exception("Notification tick failed during shutdown")
        logger.info("Notification scheduler stopped")

    async def _scheduled_tick(self) -> None:
        # Shielded: shutdown cancels job tasks, stop() awaits the tick instead.
        self._inflight = asyncio.ensure_future(self.run_tick())
        try:
            await asyncio.shield(self._inflight)
        except Exception:
            logger.exception("Notification tick failed")


def build_notification_scheduler(
    session_factory: sessionmaker | Callable[[], Session],
    config: Settings = default_settings,
) -> NotificationScheduler:
    """Wire a scheduler from settings with the Web Push sender."""

    sender = WebPushSender(PushConfig.from_settings(config))
    dispatcher = DeliveryDispatcher(
        sender,
        timeout_seconds=config.PUSH_TIMEOUT_SECONDS,
        max_workers=config.PUSH_MAX_WORKERS,
    )
    return NotificationScheduler(
        dispatcher,
        session_factory,
        interval_seconds=config.NOTIFICATION_TICK_SECONDS,
        batch_size=config.NOTIFICATION_BATCH_SIZE,
        lease_seconds=config.NOTIFICATION_CLAIM_LEASE_SECONDS,
    )
