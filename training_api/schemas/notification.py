"""Pydantic models for scheduled notifications."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Longest delay accepted when scheduling relative to now (30 days).
MAX_SCHEDULE_DELAY_SECONDS = 30 * 24 * 60 * 60


class NotificationData(BaseModel):
    """Client-side data attached to a notification (deep link and friends)."""

    url: str = "/"

    model_config = ConfigDict(extra="allow")


class NotificationPayload(BaseModel):
    """Document pushed to the service worker.

    Only ``title`` and ``body`` are required; callers may attach any extra
    keys, which are delivered untouched.
    """

    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    data: NotificationData = Field(default_factory=NotificationData)

    model_config = ConfigDict(extra="allow")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScheduleRestNotificationRequest(_CamelModel):
    duration_in_seconds: float = Field(gt=0, le=MAX_SCHEDULE_DELAY_SECONDS)
    data: Optional[NotificationData] = None


class ScheduleFinishReminderRequest(_CamelModel):
    data: Optional[NotificationData] = None


class ScheduleResponse(_CamelModel):
    message: str
    notification_id: int


class CancelResponse(_CamelModel):
    success: bool


class CancelManyResponse(_CamelModel):
    message: str
    count: int


class NotificationDeliveryRead(_CamelModel):
    endpoint: str
    outcome: str
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ScheduledNotificationRead(_CamelModel):
    id: int
    user_id: uuid.UUID
    kind: str
    status: str
    send_at: datetime
    payload: dict
    attempts: int
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ScheduledNotificationDetail(ScheduledNotificationRead):
    deliveries: List[NotificationDeliveryRead] = Field(default_factory=list)
