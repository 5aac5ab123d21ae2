"""Pytest fixtures for API and scheduler tests."""

import os
from collections.abc import Callable, Generator
from datetime import datetime, timezone

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("VAPID_PUBLIC_KEY", "test-vapid-public-key")
os.environ.setdefault("VAPID_PRIVATE_KEY", "test-vapid-private-key")
os.environ.setdefault("VAPID_SUBJECT", "mailto:tests@example.com")
os.environ["RUN_NOTIFICATION_SCHEDULER"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from training_api.api.deps import get_db
from training_api.core.security import create_access_token
from training_api.db import models  # noqa: F401  # Imported for side effects
from training_api.db.base import Base
from training_api.db.models import (
    NotificationKind,
    NotificationStatus,
    PushSubscription,
    ScheduledNotification,
    User,
    UserRole,
)
from training_api.main import create_app
from training_api.services.push_delivery import PushConfig

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables(db_engine) -> Generator[None, None, None]:
    yield
    with db_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture()
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine, expire_on_commit=False)


@pytest.fixture()
def db_session(db_engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def push_config() -> PushConfig:
    return PushConfig(
        vapid_subject="mailto:tests@example.com",
        vapid_public_key="test-vapid-public-key",
        vapid_private_key="test-vapid-private-key",
        timeout_seconds=2.0,
    )


def make_user(db: Session, email: str, role: UserRole = UserRole.STUDENT) -> User:
    user = User(email=email, full_name=email.split("@")[0], role=role.value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest.fixture()
def student(db_session: Session) -> User:
    return make_user(db_session, "student@example.com")


@pytest.fixture()
def other_student(db_session: Session) -> User:
    return make_user(db_session, "other@example.com")


@pytest.fixture()
def add_subscription(db_session: Session) -> Callable[..., PushSubscription]:
    def _add(user: User, endpoint: str) -> PushSubscription:
        subscription = PushSubscription(
            user_id=user.id, endpoint=endpoint, p256dh=f"p256dh-{endpoint[-4:]}", auth="auth-secret"
        )
        db_session.add(subscription)
        db_session.commit()
        db_session.refresh(subscription)
        return subscription

    return _add


@pytest.fixture()
def add_notification(db_session: Session) -> Callable[..., ScheduledNotification]:
    def _add(
        user: User,
        send_at: datetime,
        status: NotificationStatus = NotificationStatus.PENDING,
        kind: NotificationKind = NotificationKind.REST,
        claimed_at: datetime | None = None,
    ) -> ScheduledNotification:
        notification = ScheduledNotification(
            user_id=user.id,
            kind=kind.value,
            send_at=send_at,
            payload={"title": "Rest over", "body": "Next set!", "data": {"url": "/workout/1"}},
            status=status.value,
            claimed_at=claimed_at,
            attempts=0,
        )
        db_session.add(notification)
        db_session.commit()
        db_session.refresh(notification)
        return notification

    return _add
