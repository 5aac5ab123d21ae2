"""Pydantic schemas package."""

from training_api.schemas.auth import TokenPayload
from training_api.schemas.notification import (
    CancelManyResponse,
    CancelResponse,
    NotificationData,
    NotificationDeliveryRead,
    NotificationPayload,
    ScheduledNotificationDetail,
    ScheduledNotificationRead,
    ScheduleFinishReminderRequest,
    ScheduleResponse,
    ScheduleRestNotificationRequest,
)
from training_api.schemas.push_subscription import (
    PushSubscriptionCreate,
    PushSubscriptionDelete,
    PushSubscriptionKeys,
    PushSubscriptionRead,
    PushSubscriptionResponse,
)

__all__ = [
    "TokenPayload",
    "CancelManyResponse",
    "CancelResponse",
    "NotificationData",
    "NotificationDeliveryRead",
    "NotificationPayload",
    "ScheduledNotificationDetail",
    "ScheduledNotificationRead",
    "ScheduleFinishReminderRequest",
    "ScheduleResponse",
    "ScheduleRestNotificationRequest",
    "PushSubscriptionCreate",
    "PushSubscriptionDelete",
    "PushSubscriptionKeys",
    "PushSubscriptionRead",
    "PushSubscriptionResponse",
]
