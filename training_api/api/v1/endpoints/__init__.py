"""API endpoint modules for v1."""

from training_api.api.v1.endpoints import notifications, push_subscriptions

__all__ = ["notifications", "push_subscriptions"]
