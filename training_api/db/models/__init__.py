"""Database models package."""
from training_api.db.models.notification import (
    DeliveryOutcome,
    NotificationDelivery,
    NotificationKind,
    NotificationStatus,
    ScheduledNotification,
)
from training_api.db.models.push_subscription import PushSubscription
from training_api.db.models.user import User, UserRole

__all__ = [
    "DeliveryOutcome",
    "NotificationDelivery",
    "NotificationKind",
    "NotificationStatus",
    "PushSubscription",
    "ScheduledNotification",
    "User",
    "UserRole",
]
