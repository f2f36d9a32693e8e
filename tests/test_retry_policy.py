from datetime import timedelta

import pytest

from app.db.models import NotificationPriority, NotificationType, ScheduledNotificationStatus
from app.providers.push_transport import PushMessage
from app.services.notifications.retry_policy import RetryPolicy
from app.services.notifications.types import DeliveryItem, TransitionResult


def _item_for(notification) -> DeliveryItem:
    return DeliveryItem(
        notification_id=notification.id,
        retry_count=notification.retry_count,
        max_retries=notification.max_retries,
        notification_type=NotificationType.REMINDER,
        priority=NotificationPriority.NORMAL,
        message=PushMessage(to="ExponentPushToken[x]", title="t", body="b"),
    )


class TestBackoff:
    def test_first_retry_waits_one_delay_unit(self, db_session):
        policy = RetryPolicy(db_session, retry_delay_minutes=5)

        assert policy.backoff_for(1) == timedelta(minutes=5)
        assert policy.backoff_for(2) == timedelta(minutes=10)

    def test_zero_delay_retries_immediately(self, db_session):
        policy = RetryPolicy(db_session, retry_delay_minutes=0)

        assert policy.backoff_for(1) == timedelta(0)

    def test_next_retry_at_strictly_increases_with_each_failure(
        self, db_session, sample_user, notification_factory, reload, now
    ):
        notification = notification_factory(sample_user, max_retries=5)
        policy = RetryPolicy(db_session, retry_delay_minutes=5)

        retry_times = []
        for _ in range(3):
            notification = reload(notification)
            result = policy.apply_failure(_item_for(notification), "DeviceNotRegistered", now)
            assert result == TransitionResult.RETRY_SCHEDULED
            retry_times.append(reload(notification).next_retry_at)

        assert retry_times == [
            now + timedelta(minutes=5),
            now + timedelta(minutes=10),
            now + timedelta(minutes=15),
        ]


class TestRetryBound:
    def test_failure_reaching_max_retries_is_final(
        self, db_session, sample_user, notification_factory, reload, now
    ):
        notification = notification_factory(sample_user, retry_count=2, max_retries=3)

        result = RetryPolicy(db_session).apply_failure(
            _item_for(notification), "MessageRateExceeded", now
        )

        stored = reload(notification)
        assert result == TransitionResult.FAILED
        assert stored.status == ScheduledNotificationStatus.FAILED
        assert stored.retry_count == 3
        assert stored.processed_at == now
        assert stored.next_retry_at is None
        assert stored.last_error == "MessageRateExceeded"

    def test_three_consecutive_failures_never_attempt_a_fourth(
        self, db_session, sample_user, notification_factory, reload, now
    ):
        notification = notification_factory(sample_user, max_retries=3)
        policy = RetryPolicy(db_session)

        results = []
        for _ in range(3):
            notification = reload(notification)
            results.append(policy.apply_failure(_item_for(notification), "boom", now))

        assert results == [
            TransitionResult.RETRY_SCHEDULED,
            TransitionResult.RETRY_SCHEDULED,
            TransitionResult.FAILED,
        ]
        assert reload(notification).retry_count == 3


class TestConditionalUpdate:
    @pytest.mark.parametrize(
        "status",
        [
            ScheduledNotificationStatus.SENT,
            ScheduledNotificationStatus.FAILED,
            ScheduledNotificationStatus.CANCELLED,
        ],
    )
    def test_terminal_record_is_left_untouched(
        self, db_session, sample_user, notification_factory, reload, now, status
    ):
        notification = notification_factory(sample_user, status=status, processed_at=now)

        result = RetryPolicy(db_session).apply_failure(
            _item_for(notification), "late error", now
        )

        stored = reload(notification)
        assert result == TransitionResult.SKIPPED
        assert stored.status == status
        assert stored.retry_count == 0
        assert stored.last_error is None

    def test_same_failure_applied_twice_counts_once(
        self, db_session, sample_user, notification_factory, reload, now
    ):
        notification = notification_factory(sample_user)
        item = _item_for(notification)
        policy = RetryPolicy(db_session)

        first = policy.apply_failure(item, "boom", now)
        second = policy.apply_failure(item, "boom", now)

        assert first == TransitionResult.RETRY_SCHEDULED
        assert second == TransitionResult.SKIPPED
        assert reload(notification).retry_count == 1
