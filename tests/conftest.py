import uuid
from datetime import datetime, timedelta
from typing import Callable, Generator, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models import (
    Base,
    NotificationPriority,
    NotificationType,
    ScheduledNotification,
    ScheduledNotificationStatus,
    User,
)
from app.providers.push_transport import PushMessage, PushTicket, PushTransport


# Test database setup
TEST_DATABASE_URL = "sqlite:///:memory:"

VALID_TOKEN = "ExponentPushToken[test-device-0001]"


@pytest.fixture
def test_engine():
    """Create a fresh in-memory database per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def now() -> datetime:
    """A fixed naive UTC instant (Monday 10 March 2025, 12:00)."""
    return datetime(2025, 3, 10, 12, 0, 0)


class FakePushTransport(PushTransport):
    """Records every batch and answers with scripted tickets.

    ``responder`` receives the batch and returns the tickets; returning or
    raising an exception fails the whole batch. Without a responder every
    message is accepted.
    """

    def __init__(
        self,
        responder: Optional[Callable[[List[PushMessage]], object]] = None,
        max_batch_size: int = 100,
    ):
        self.responder = responder
        self.max_batch_size = max_batch_size
        self.sent_batches: List[List[PushMessage]] = []

    def is_valid_token(self, token: Optional[str]) -> bool:
        return bool(token) and token.startswith("ExponentPushToken[")

    @property
    def sent_messages(self) -> List[PushMessage]:
        return [message for batch in self.sent_batches for message in batch]

    async def send(self, messages: Sequence[PushMessage]) -> List[PushTicket]:
        batch = list(messages)
        self.sent_batches.append(batch)

        if self.responder is None:
            return [
                PushTicket.ok(f"receipt-{len(self.sent_batches)}-{index}")
                for index, _ in enumerate(batch)
            ]

        result = self.responder(batch)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fake_transport() -> FakePushTransport:
    return FakePushTransport()


@pytest.fixture
def transport_factory():
    return FakePushTransport


# Test data factories
@pytest.fixture
def user_factory(db_session: Session):
    def _create(
        push_token: Optional[str] = VALID_TOKEN,
        notifications_enabled: bool = True,
        name: str = "Test Student",
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            name=name,
            email=f"{uuid.uuid4().hex[:12]}@example.com",
            push_token=push_token,
            notifications_enabled=notifications_enabled,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _create


@pytest.fixture
def sample_user(user_factory) -> User:
    return user_factory()


@pytest.fixture
def notification_factory(db_session: Session, now: datetime):
    def _create(
        recipient: User,
        scheduled_for: Optional[datetime] = None,
        status: ScheduledNotificationStatus = ScheduledNotificationStatus.PENDING,
        retry_count: int = 0,
        max_retries: int = 3,
        next_retry_at: Optional[datetime] = None,
        processed_at: Optional[datetime] = None,
        notification_type: NotificationType = NotificationType.REMINDER,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        title: str = "📚 Attendance Reminder",
        body: str = "Don't forget to mark attendance for Databases",
        payload: Optional[dict] = None,
    ) -> ScheduledNotification:
        notification = ScheduledNotification(
            id=str(uuid.uuid4()),
            recipient_id=recipient.id,
            title=title,
            body=body,
            payload=payload if payload is not None else {"classId": "class-1"},
            scheduled_for=(
                scheduled_for
                if scheduled_for is not None
                else now - timedelta(minutes=1)
            ),
            type=notification_type,
            priority=priority,
            status=status,
            retry_count=retry_count,
            max_retries=max_retries,
            next_retry_at=next_retry_at,
            processed_at=processed_at,
        )
        db_session.add(notification)
        db_session.commit()
        return notification

    return _create


@pytest.fixture
def reload(db_session: Session):
    """Re-read a row after conditional updates issued behind the ORM's back."""

    def _reload(instance):
        db_session.expire_all()
        return db_session.get(type(instance), instance.id)

    return _reload

