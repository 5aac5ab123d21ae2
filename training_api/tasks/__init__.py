"""Celery tasks package."""

from training_api.tasks import notifications

__all__ = ["notifications"]
