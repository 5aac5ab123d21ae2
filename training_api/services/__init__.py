"""Service layer package."""

from training_api.services.dispatcher import DeliveryDispatcher
from training_api.services.notification_service import NotificationService
from training_api.services.push_delivery import PushConfig, WebPushSender
from training_api.services.push_subscriptions import PushSubscriptionService
from training_api.services.scheduler import NotificationScheduler

__all__ = [
    "DeliveryDispatcher",
    "NotificationScheduler",
    "NotificationService",
    "PushConfig",
    "PushSubscriptionService",
    "WebPushSender",
]
