"""Scheduled push notification endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from training_api.api import deps
from training_api.config import settings
from training_api.db.models.notification import NotificationKind, NotificationStatus
from training_api.db.models.user import User
from training_api.schemas import (
    CancelManyResponse,
    CancelResponse,
    ScheduledNotificationDetail,
    ScheduledNotificationRead,
    ScheduleFinishReminderRequest,
    ScheduleResponse,
    ScheduleRestNotificationRequest,
)
from training_api.services.notification_service import (
    InvalidScheduleError,
    NotificationNotFoundError,
    NotificationService,
)
from training_api.utils.exceptions import handle_not_found_error, handle_validation_error

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/vapid-public-key")
def get_vapid_public_key() -> dict:
    return {"publicKey": settings.VAPID_PUBLIC_KEY}


@router.post(
    "/schedule/rest", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED
)
def schedule_rest_notification(
    payload: ScheduleRestNotificationRequest,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> ScheduleResponse:
    """Schedule the "rest is over" notification for the current set."""

    service = NotificationService(db)
    try:
        notification = service.schedule_rest_notification(
            current_user.id, payload.duration_in_seconds, payload.data
        )
    except InvalidScheduleError as exc:
        raise handle_validation_error(exc) from exc
    return ScheduleResponse(
        message="Notification scheduled successfully", notification_id=notification.id
    )


@router.post(
    "/schedule/finish-reminder",
    response_model=ScheduleResponse,
    status_code=status.HTTP_201_CREATED,
)
def schedule_finish_reminder(
    payload: ScheduleFinishReminderRequest,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> ScheduleResponse:
    service = NotificationService(db)
    try:
        notification = service.schedule_finish_reminder(current_user.id, payload.data)
    except InvalidScheduleError as exc:
        raise handle_validation_error(exc) from exc
    return ScheduleResponse(
        message="Finish workout reminder scheduled successfully.",
        notification_id=notification.id,
    )


@router.post("/cancel-rest", response_model=CancelManyResponse)
def cancel_rest_notifications(
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> CancelManyResponse:
    count = NotificationService(db).cancel_pending_of_kind(current_user.id, NotificationKind.REST)
    return CancelManyResponse(message="Pending rest notifications have been cancelled.", count=count)


@router.post("/cancel-all", response_model=CancelManyResponse)
def cancel_all_notifications(
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> CancelManyResponse:
    count = NotificationService(db).cancel_all_pending(current_user.id)
    return CancelManyResponse(message="All pending notifications have been cancelled.", count=count)


@router.get("", response_model=list[ScheduledNotificationRead])
def list_notifications(
    status_filter: Optional[NotificationStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> list[ScheduledNotificationRead]:
    service = NotificationService(db)
    notifications = service.list_notifications(
        current_user.id, status=status_filter, limit=limit, offset=offset
    )
    return [ScheduledNotificationRead.model_validate(item) for item in notifications]


@router.get("/{notification_id}", response_model=ScheduledNotificationDetail)
def read_notification(
    notification_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> ScheduledNotificationDetail:
    """Return a notification of the current user with its delivery log."""

    try:
        notification = NotificationService(db).get_notification(notification_id, current_user.id)
    except NotificationNotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    return ScheduledNotificationDetail.model_validate(notification)


@router.post("/{notification_id}/cancel", response_model=CancelResponse)
def cancel_notification(
    notification_id: int,
    db: Session = Depends(deps.get_db),
    current_user: User = Depends(deps.get_current_user),
) -> CancelResponse:
    """Cancel a pending notification; ``success`` is false when it was too late."""

    success = NotificationService(db).cancel_notification(notification_id, current_user.id)
    return CancelResponse(success=success)
