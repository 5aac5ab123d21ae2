"""Registry of Web Push subscriptions."""
from __future__ import annotations

import uuid
from typing import Iterable

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from training_api.db.models.push_subscription import PushSubscription


class PushSubscriptionService:
    """Create, update and prune push subscriptions."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_endpoint(self, endpoint: str) -> PushSubscription | None:
        return self.db.scalars(
            select(PushSubscription).where(PushSubscription.endpoint == endpoint)
        ).first()

    def subscribe(
        self,
        user_id: uuid.UUID,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: str | None = None,
    ) -> tuple[PushSubscription, bool]:
        """Register ``endpoint`` for ``user_id``.

        Returns the stored subscription and whether it was newly created. An
        endpoint already known (possibly under another user) gets the new key
        material and owner.
        """
        existing = self.get_by_endpoint(endpoint)
        if existing is not None:
            self._apply(existing, user_id, p256dh, auth, user_agent)
            self.db.commit()
            return existing, False

        subscription = PushSubscription(
            user_id=user_id,
            endpoint=endpoint,
            p256dh=p256dh,
            auth=auth,
            user_agent=user_agent,
        )
        self.db.add(subscription)
        try:
            self.db.commit()
        except IntegrityError:
            # Another request registered the same endpoint in the meantime.
            self.db.rollback()
            existing = self.get_by_endpoint(endpoint)
            if existing is None:
                raise
            self._apply(existing, user_id, p256dh, auth, user_agent)
            self.db.commit()
            return existing, False

        self.db.refresh(subscription)
        logger.info("Push subscription registered", user_id=str(user_id), subscription_id=subscription.id)
        return subscription, True

    @staticmethod
    def _apply(
        subscription: PushSubscription,
        user_id: uuid.UUID,
        p256dh: str,
        auth: str,
        user_agent: str | None,
    ) -> None:
        subscription.user_id = user_id
        subscription.p256dh = p256dh
        subscription.auth = auth
        if user_agent is not None:
            subscription.user_agent = user_agent

    def unsubscribe(self, user_id: uuid.UUID, endpoint: str) -> bool:
        """Delete the caller's subscription for ``endpoint``; False if none matched."""

        deleted = (
            self.db.query(PushSubscription)
            .filter(PushSubscription.endpoint == endpoint, PushSubscription.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if deleted:
            logger.info("Push subscription removed", user_id=str(user_id))
        return deleted > 0

    def list_for_user(self, user_id: uuid.UUID) -> list[PushSubscription]:
        stmt = (
            select(PushSubscription)
            .where(PushSubscription.user_id == user_id)
            .order_by(PushSubscription.id)
        )
        return list(self.db.scalars(stmt))

    def remove(self, subscription_ids: Iterable[int]) -> int:
        """Delete subscriptions by id without committing. Returns rows removed."""

        ids = list(subscription_ids)
        if not ids:
            return 0
        return (
            self.db.query(PushSubscription)
            .filter(PushSubscription.id.in_(ids))
            .delete(synchronize_session=False)
        )
