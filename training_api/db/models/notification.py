"""Scheduled notification and delivery log models."""
import enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

from training_api.db.base import Base


class NotificationStatus(str, enum.Enum):
    """Lifecycle of a scheduled notification.

    ``PROCESSING`` marks a row claimed by a scheduler tick. ``SENT``,
    ``CANCELLED`` and ``ERROR`` are terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    CANCELLED = "cancelled"
    ERROR = "error"


class NotificationKind(str, enum.Enum):
    REST = "rest"
    FINISH_REMINDER = "finish_reminder"
    TEST = "test"
    GENERIC = "generic"


class DeliveryOutcome(str, enum.Enum):
    DELIVERED = "delivered"
    GONE = "gone"
    FAILED = "failed"


class ScheduledNotification(Base):
    """A push notification to be delivered to every device of a user at ``send_at``."""

    __tablename__ = "scheduled_notifications"
    __table_args__ = (
        Index("ix_scheduled_notifications_status_send_at", "status", "send_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind = Column(String(30), nullable=False, default=NotificationKind.GENERIC.value)
    send_at = Column(DateTime(timezone=True), nullable=False)
    payload = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=False)
    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value)

    # Claim bookkeeping
    claimed_at = Column(DateTime(timezone=True))
    attempts = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    deliveries = relationship(
        "NotificationDelivery",
        back_populates="notification",
        order_by="NotificationDelivery.id",
        cascade="all, delete-orphan",
    )


class NotificationDelivery(Base):
    """Outcome of one delivery attempt to one endpoint.

    Kept apart from ``ScheduledNotification.status`` so that a row marked
    ``sent`` whose endpoints all failed can still be told apart from a real
    delivery.
    """

    __tablename__ = "notification_deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(
        Integer,
        ForeignKey("scheduled_notifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Copied rather than referenced: gone subscriptions are deleted.
    endpoint = Column(Text, nullable=False)
    outcome = Column(String(20), nullable=False)
    status_code = Column(Integer)
    error = Column(Text)
    attempted_at = Column(DateTime(timezone=True), server_default=func.now())

    notification = relationship("ScheduledNotification", back_populates="deliveries")
