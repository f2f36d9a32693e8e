from datetime import timedelta

import pytest

from app.db.models import DeliveryOutcome, NotificationLog, NotificationType
from app.services.notifications.analytics_service import DeliveryAnalyticsService

TOKEN = "ExponentPushToken[test-device-0001]"


@pytest.fixture
def log_factory(db_session):
    def _create(
        sent_at,
        outcome=DeliveryOutcome.OK,
        token=TOKEN,
        notification_type=NotificationType.REMINDER,
        error_message=None,
    ):
        log = NotificationLog(
            recipient_token=token,
            title="📚 Attendance Reminder",
            body="Don't forget to mark attendance",
            outcome=outcome,
            receipt_id="receipt" if outcome == DeliveryOutcome.OK else None,
            error_message=error_message,
            notification_type=notification_type,
            sent_at=sent_at,
        )
        db_session.add(log)
        db_session.commit()
        return log

    return _create


class TestDeliveryStats:
    @pytest.mark.asyncio
    async def test_counts_per_day_and_outcome(self, db_session, log_factory, now):
        log_factory(now - timedelta(days=1))
        log_factory(now - timedelta(days=1), outcome=DeliveryOutcome.ERROR)
        log_factory(now)
        log_factory(now)
        log_factory(now - timedelta(days=30))

        stats = await DeliveryAnalyticsService(db_session).get_delivery_stats(
            now - timedelta(days=2), now
        )

        assert [day.date for day in stats] == ["2025-03-10", "2025-03-09"]
        assert stats[0].total == 2
        assert stats[1].total == 2
        assert {c.outcome: c.count for c in stats[1].stats} == {
            DeliveryOutcome.OK: 1,
            DeliveryOutcome.ERROR: 1,
        }


class TestTypeStats:
    @pytest.mark.asyncio
    async def test_success_rate_per_type(self, db_session, log_factory, now):
        for outcome in (DeliveryOutcome.OK, DeliveryOutcome.OK, DeliveryOutcome.ERROR):
            log_factory(now - timedelta(hours=1), outcome=outcome)
        log_factory(now - timedelta(hours=1), notification_type=NotificationType.SYSTEM)
        log_factory(now - timedelta(days=10), outcome=DeliveryOutcome.ERROR)

        stats = await DeliveryAnalyticsService(db_session).get_type_stats(days=7, now=now)

        by_type = {item.type: item for item in stats}
        assert by_type[NotificationType.REMINDER].total == 3
        assert by_type[NotificationType.REMINDER].failed == 1
        assert by_type[NotificationType.REMINDER].success_rate == 66.67
        assert by_type[NotificationType.SYSTEM].success_rate == 100


class TestFailedNotifications:
    @pytest.mark.asyncio
    async def test_newest_failures_first(self, db_session, log_factory, now):
        log_factory(now - timedelta(hours=2), DeliveryOutcome.ERROR, error_message="older")
        log_factory(now - timedelta(hours=1), DeliveryOutcome.ERROR, error_message="newer")
        log_factory(now)

        failed = await DeliveryAnalyticsService(db_session).get_failed_notifications(limit=10)

        assert [item.error_message for item in failed] == ["newer", "older"]


class TestUserViews:
    @pytest.mark.asyncio
    async def test_user_logs_are_filtered_by_token(
        self, db_session, sample_user, log_factory, now
    ):
        log_factory(now - timedelta(hours=1))
        log_factory(now, outcome=DeliveryOutcome.ERROR)
        log_factory(now, token="ExponentPushToken[someone-else]")

        service = DeliveryAnalyticsService(db_session)
        logs, total = await service.get_user_delivery_logs(sample_user.id)
        errors, error_total = await service.get_user_delivery_logs(
            sample_user.id, outcome=DeliveryOutcome.ERROR
        )

        assert total == 2
        assert logs[0].sent_at == now
        assert error_total == 1
        assert errors[0].outcome == DeliveryOutcome.ERROR

    @pytest.mark.asyncio
    async def test_user_without_token_has_no_history(
        self, db_session, user_factory, log_factory, now
    ):
        user = user_factory(push_token=None)
        log_factory(now)

        service = DeliveryAnalyticsService(db_session)

        assert await service.get_user_delivery_logs(user.id) == ([], 0)
        assert (await service.get_user_stats(user.id)).total == 0

    @pytest.mark.asyncio
    async def test_user_stats(self, db_session, sample_user, log_factory, now):
        log_factory(now - timedelta(hours=1))
        log_factory(now - timedelta(hours=1))
        log_factory(now - timedelta(hours=1), outcome=DeliveryOutcome.ERROR)

        stats = await DeliveryAnalyticsService(db_session).get_user_stats(
            sample_user.id, days=7, now=now
        )

        assert stats.total == 3
        assert stats.successful == 2
        assert stats.failed == 1
        assert stats.success_rate == 67
        assert stats.by_type[0].type == NotificationType.REMINDER
