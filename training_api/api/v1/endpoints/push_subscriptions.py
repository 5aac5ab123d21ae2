"""Push subscription registration endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Header, Response, status
from sqlalchemy.orm import Session

from training_api.api import deps
from training_api.db.models.user import User
from training_api.schemas import (
    PushSubscriptionCreate,
    PushSubscriptionDelete,
    PushSubscriptionRead,
    PushSubscriptionResponse,
)
from training_api.services.notification_service import NotificationService
from training_api.services.push_subscriptions import PushSubscriptionService
from training_api.utils.exceptions import (
    NotFoundError,
    SubscriptionError,
    handle_not_found_error,
    handle_subscription_error,
)

router = APIRouter(prefix="/push-subscriptions", tags=["push-subscriptions"])


@router.post("", response_model=PushSubscriptionResponse)
def register_subscription(
    payload: PushSubscriptionCreate,
    response: Response,
    user_agent: str | None = Header(default=None),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> PushSubscriptionResponse:
    """Store the browser subscription, replacing keys when the endpoint is known."""

    service = PushSubscriptionService(db)
    subscription, created = service.subscribe(
        current_user.id,
        payload.endpoint,
        payload.keys.p256dh,
        payload.keys.auth,
        user_agent=user_agent[:255] if user_agent else None,
    )
    if created:
        response.status_code = status.HTTP_201_CREATED
    message = (
        "Push subscription created successfully"
        if created
        else "Push subscription updated successfully"
    )
    return PushSubscriptionResponse(
        message=message, subscription=PushSubscriptionRead.model_validate(subscription)
    )


@router.delete("")
def unregister_subscription(
    payload: PushSubscriptionDelete = Body(...),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> dict:
    removed = PushSubscriptionService(db).unsubscribe(current_user.id, payload.endpoint)
    if not removed:
        raise handle_not_found_error(NotFoundError("Push subscription not found"))
    return {"message": "Push subscription removed successfully"}


@router.post("/test", status_code=status.HTTP_202_ACCEPTED)
def send_test_notification(
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> dict:
    """Queue a notification for immediate delivery to every registered device."""

    subscriptions = PushSubscriptionService(db).list_for_user(current_user.id)
    if not subscriptions:
        raise handle_subscription_error(
            SubscriptionError("No push subscription registered for this user")
        )
    notification = NotificationService(db).schedule_test_notification(current_user.id)
    return {
        "message": "Test notification queued",
        "notificationId": notification.id,
        "subscriptionsCount": len(subscriptions),
    }
