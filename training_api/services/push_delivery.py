"""Web Push delivery primitive built on ``pywebpush``."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pywebpush import WebPushException, webpush

from training_api.config import Settings

# Push services answer 404 or 410 once the browser dropped the subscription.
GONE_STATUS_CODES = frozenset({404, 410})


class PushDeliveryError(Exception):
    """Raised when a push delivery attempt fails for a retryable or unknown reason."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PushGoneError(PushDeliveryError):
    """Raised when the push service reports the subscription as expired."""

    def __init__(self, endpoint: str, status_code: int):
        self.endpoint = endpoint
        super().__init__(f"Push subscription gone: {endpoint[:60]}", status_code=status_code)


class PushNotConfiguredError(RuntimeError):
    """Raised when VAPID credentials are missing."""


@dataclass(frozen=True, slots=True)
class PushTarget:
    """Snapshot of a subscription taken when a notification is claimed."""

    subscription_id: int
    endpoint: str
    p256dh: str
    auth: str

    def subscription_info(self) -> dict[str, Any]:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


@dataclass(frozen=True, slots=True)
class PushConfig:
    """VAPID credentials and transport options for Web Push."""

    vapid_subject: str
    vapid_public_key: str | None = None
    vapid_private_key: str | None = None
    ttl_seconds: int = 86400
    timeout_seconds: float = 10.0
    headers: dict[str, str] = field(default_factory=lambda: {"Urgency": "high"})

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushConfig":
        return cls(
            vapid_subject=settings.VAPID_SUBJECT,
            vapid_public_key=settings.VAPID_PUBLIC_KEY,
            vapid_private_key=settings.VAPID_PRIVATE_KEY,
            ttl_seconds=settings.PUSH_TTL_SECONDS,
            timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.vapid_private_key and self.vapid_public_key and self.vapid_subject)


class WebPushSender:
    """Blocking sender for a single endpoint. Callers run it off the event loop."""

    def __init__(self, config: PushConfig):
        self.config = config

    def send(self, target: PushTarget, payload_json: str) -> int | None:
        """Deliver ``payload_json`` to ``target`` and return the HTTP status code.

        Raises:
            PushNotConfiguredError: VAPID keys are missing.
            PushGoneError: The push service answered 404 or 410.
            PushDeliveryError: Any other failure.
        """
        if not self.config.is_configured:
            raise PushNotConfiguredError("VAPID keys are not configured")

        try:
            response = webpush(
                subscription_info=target.subscription_info(),
                data=payload_json,
                vapid_private_key=self.config.vapid_private_key,
                # webpush() adds "aud" and "exp" to the claims dict it is given.
                vapid_claims={"sub": self.config.vapid_subject},
                ttl=self.config.ttl_seconds,
                timeout=self.config.timeout_seconds,
                headers=dict(self.config.headers),
            )
        except WebPushException as exc:
            status_code = getattr(exc.response, "status_code", None)
            if status_code in GONE_STATUS_CODES:
                raise PushGoneError(target.endpoint, status_code) from exc
            raise PushDeliveryError(str(exc), status_code=status_code) from exc
        except Exception as exc:
            raise PushDeliveryError(str(exc)) from exc

        return getattr(response, "status_code", None)
