"""Scheduling and cancellation of push notifications."""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from training_api.config import settings
from training_api.db.models.notification import (
    NotificationKind,
    NotificationStatus,
    ScheduledNotification,
)
from training_api.schemas.notification import (
    MAX_SCHEDULE_DELAY_SECONDS,
    NotificationData,
    NotificationPayload,
)
from training_api.utils.exceptions import NotFoundError, ValidationError

REST_TITLE = "Acabou a moleza!"
REST_BODY = "O descanso encerrou, execute a próxima série!"
FINISH_REMINDER_TITLE = "Treino em andamento"
FINISH_REMINDER_BODY = "Não esqueça de finalizar o seu treino!"
TEST_TITLE = "Notificações ativadas"
TEST_BODY = "Esta é uma notificação de teste."


class InvalidScheduleError(ValidationError):
    """Raised when a notification cannot be scheduled with the supplied timing or payload."""


class NotificationNotFoundError(NotFoundError):
    """Raised when a notification does not exist or belongs to another user."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class NotificationService:
    """Boundary operations that create and retract pending notifications."""

    def __init__(self, db: Session, *, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def schedule_notification(
        self,
        user_id: uuid.UUID,
        payload: NotificationPayload | Mapping[str, Any],
        *,
        send_at: datetime | None = None,
        delay_seconds: float | None = None,
        kind: NotificationKind = NotificationKind.GENERIC,
    ) -> ScheduledNotification:
        """Persist a pending notification due at ``send_at`` or after ``delay_seconds``."""

        if (send_at is None) == (delay_seconds is None):
            raise InvalidScheduleError("Provide exactly one of send_at or delay_seconds")
        if delay_seconds is not None:
            if not 0 < delay_seconds <= MAX_SCHEDULE_DELAY_SECONDS:
                raise InvalidScheduleError(
                    f"Delay must be positive and at most {MAX_SCHEDULE_DELAY_SECONDS} seconds",
                    details={"delay_seconds": delay_seconds},
                )
            try:
                send_at = self.clock() + timedelta(seconds=delay_seconds)
            except (OverflowError, ValueError) as exc:
                raise InvalidScheduleError(
                    "Delay is out of range", details={"delay_seconds": delay_seconds}
                ) from exc
        else:
            send_at = as_utc(send_at)

        if not isinstance(payload, NotificationPayload):
            try:
                payload = NotificationPayload.model_validate(payload)
            except PydanticValidationError as exc:
                raise InvalidScheduleError(
                    "Invalid notification payload", details={"errors": exc.errors()}
                ) from exc

        notification = ScheduledNotification(
            user_id=user_id,
            kind=NotificationKind(kind).value,
            send_at=send_at,
            payload=payload.model_dump(mode="json"),
            status=NotificationStatus.PENDING.value,
            attempts=0,
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)

        logger.info(
            "Notification scheduled",
            notification_id=notification.id,
            user_id=str(user_id),
            kind=notification.kind,
            send_at=send_at.isoformat(),
        )
        return notification

    def schedule_rest_notification(
        self,
        user_id: uuid.UUID,
        duration_seconds: float,
        data: NotificationData | None = None,
    ) -> ScheduledNotification:
        """Notify the student when the rest between sets is over."""

        payload = NotificationPayload(
            title=REST_TITLE, body=REST_BODY, data=data or NotificationData()
        )
        return self.schedule_notification(
            user_id, payload, delay_seconds=duration_seconds, kind=NotificationKind.REST
        )

    def schedule_finish_reminder(
        self,
        user_id: uuid.UUID,
        data: NotificationData | None = None,
    ) -> ScheduledNotification:
        """Remind the student to close a workout left open."""

        payload = NotificationPayload(
            title=FINISH_REMINDER_TITLE,
            body=FINISH_REMINDER_BODY,
            data=data or NotificationData(),
        )
        return self.schedule_notification(
            user_id,
            payload,
            delay_seconds=settings.FINISH_REMINDER_DELAY_SECONDS,
            kind=NotificationKind.FINISH_REMINDER,
        )

    def schedule_test_notification(self, user_id: uuid.UUID) -> ScheduledNotification:
        """Queue a notification that the next scheduler tick delivers."""

        payload = NotificationPayload(title=TEST_TITLE, body=TEST_BODY)
        return self.schedule_notification(
            user_id, payload, send_at=self.clock(), kind=NotificationKind.TEST
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    def cancel_notification(self, notification_id: int, user_id: uuid.UUID) -> bool:
        """Cancel one notification if it is still pending and owned by ``user_id``.

        The status check is part of the UPDATE, so a tick that already claimed
        the row wins and this call reports ``False``.
        """

        count = self._cancel_where(
            ScheduledNotification.id == notification_id,
            ScheduledNotification.user_id == user_id,
        )
        if count:
            logger.info(
                "Notification cancelled", notification_id=notification_id, user_id=str(user_id)
            )
        return count > 0

    def cancel_all_pending(self, user_id: uuid.UUID) -> int:
        count = self._cancel_where(ScheduledNotification.user_id == user_id)
        logger.info("Pending notifications cancelled", user_id=str(user_id), count=count)
        return count

    def cancel_pending_of_kind(self, user_id: uuid.UUID, kind: NotificationKind) -> int:
        count = self._cancel_where(
            ScheduledNotification.user_id == user_id,
            ScheduledNotification.kind == NotificationKind(kind).value,
        )
        logger.info(
            "Pending notifications cancelled",
            user_id=str(user_id),
            kind=NotificationKind(kind).value,
            count=count,
        )
        return count

    def _cancel_where(self, *criteria) -> int:
        count = (
            self.db.query(ScheduledNotification)
            .filter(
                ScheduledNotification.status == NotificationStatus.PENDING.value,
                *criteria,
            )
            .update(
                {
                    ScheduledNotification.status: NotificationStatus.CANCELLED.value,
                    ScheduledNotification.processed_at: self.clock(),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_notification(self, notification_id: int, user_id: uuid.UUID) -> ScheduledNotification:
        stmt = (
            select(ScheduledNotification)
            .options(selectinload(ScheduledNotification.deliveries))
            .where(
                ScheduledNotification.id == notification_id,
                ScheduledNotification.user_id == user_id,
            )
        )
        notification = self.db.scalars(stmt).first()
        if notification is None:
            raise NotificationNotFoundError("Notification not found")
        return notification

    def list_notifications(
        self,
        user_id: uuid.UUID,
        *,
        status: NotificationStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ScheduledNotification]:
        """Return the user's notifications, most recent ``send_at`` first."""

        stmt = select(ScheduledNotification).where(ScheduledNotification.user_id == user_id)
        if status is not None:
            stmt = stmt.where(ScheduledNotification.status == NotificationStatus(status).value)
        stmt = (
            stmt.order_by(ScheduledNotification.send_at.desc(), ScheduledNotification.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.scalars(stmt))
