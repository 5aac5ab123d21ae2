"""Utility helpers package."""

from training_api.utils.exceptions import (
    NotFoundError,
    SubscriptionError,
    TrainingApiException,
    ValidationError,
)

__all__ = ["NotFoundError", "SubscriptionError", "TrainingApiException", "ValidationError"]
