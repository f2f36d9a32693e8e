from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.db.models import ScheduledNotificationStatus
from app.services.notifications.ticket_processor import TicketProcessor
from app.tasks.background.send_immediate_notification import (
    _async_send_immediate_notification,
    send_immediate_notification_task,
)
from app.tasks.cron.attendance_reminder_scheduler import (
    _async_attendance_reminder_scheduler,
)
from app.tasks.cron.notification_cleanup import _async_notification_cleanup
from app.tasks.cron.process_due_notifications import _async_process_due_notifications
from app.utils.datetime_utils import naive_utc_now
from app.utils.errors import PushTransportError


@pytest.fixture
def session_provider(db_session):
    def _get_sync_session():
        yield db_session

    return _get_sync_session


class TestProcessDueNotificationsTask:
    @pytest.mark.asyncio
    async def test_sweep_returns_summary(
        self, db_session, sample_user, notification_factory, fake_transport, session_provider, reload
    ):
        notification = notification_factory(
            sample_user, scheduled_for=naive_utc_now() - timedelta(minutes=1)
        )
        module = "app.tasks.cron.process_due_notifications"

        with patch(f"{module}.get_sync_session", session_provider), patch(
            f"{module}.get_push_transport", return_value=fake_transport
        ):
            result = await _async_process_due_notifications("test-request")

        assert result["success"] is True
        assert result["summary"]["sent"] == 1
        assert result["summary"]["totalDue"] == 1
        assert result["request_id"] == "test-request"
        assert reload(notification).status == ScheduledNotificationStatus.SENT

    @pytest.mark.asyncio
    async def test_partial_completion_is_reported_as_failure(
        self, db_session, sample_user, notification_factory, fake_transport, session_provider
    ):
        notification_factory(sample_user, scheduled_for=naive_utc_now() - timedelta(minutes=1))
        module = "app.tasks.cron.process_due_notifications"

        with patch(f"{module}.get_sync_session", session_provider), patch(
            f"{module}.get_push_transport", return_value=fake_transport
        ), patch.object(
            TicketProcessor,
            "mark_sent",
            side_effect=OperationalError("UPDATE", {}, Exception("database is locked")),
        ):
            result = await _async_process_due_notifications("test-request")

        assert result["success"] is False
        assert result["error"] == "Processed 0 of 1 due notifications"
        assert result["summary"]["storageFailures"] == 1


class TestAttendanceReminderTask:
    @pytest.mark.asyncio
    async def test_reports_scheduled_count(self, session_provider):
        module = "app.tasks.cron.attendance_reminder_scheduler"

        with patch(f"{module}.get_sync_session", session_provider):
            result = await _async_attendance_reminder_scheduler("test-request")

        assert result["success"] is True
        assert result["scheduled_count"] == 0


class TestNotificationCleanupTask:
    @pytest.mark.asyncio
    async def test_removes_expired_records_and_logs(
        self, db_session, sample_user, notification_factory, session_provider
    ):
        notification_factory(
            sample_user,
            status=ScheduledNotificationStatus.SENT,
            processed_at=naive_utc_now() - timedelta(days=60),
        )

        with patch(
            "app.tasks.cron.notification_cleanup.get_sync_session", session_provider
        ):
            result = await _async_notification_cleanup("test-request")

        assert result == {
            "success": True,
            "deleted_notifications": 1,
            "deleted_logs": 0,
            "request_id": "test-request",
        }


class TestSendImmediateNotificationTask:
    module = "app.tasks.background.send_immediate_notification"

    @pytest.mark.asyncio
    async def test_sends_through_transport(
        self, sample_user, fake_transport, session_provider
    ):
        with patch(f"{self.module}.get_sync_session", session_provider), patch(
            f"{self.module}.get_push_transport", return_value=fake_transport
        ):
            result = await _async_send_immediate_notification(
                "test-request", sample_user.id, "Hello", "World", {"type": "test"}
            )

        assert result["success"] is True
        assert result["receipt_id"] == "receipt-1-0"
        assert fake_transport.sent_messages[0].title == "Hello"

    def test_invalid_token_is_not_retried(
        self, user_factory, fake_transport, session_provider
    ):
        user = user_factory(push_token=None)

        with patch(f"{self.module}.get_sync_session", session_provider), patch(
            f"{self.module}.get_push_transport", return_value=fake_transport
        ), patch.object(send_immediate_notification_task, "retry") as retry:
            result = send_immediate_notification_task.run(
                "test-request", user.id, "Hello", "World"
            )

        assert result["success"] is False
        assert result["error_code"] == "INVALID_PUSH_TOKEN"
        retry.assert_not_called()

    def test_gateway_failure_is_retried(
        self, sample_user, transport_factory, session_provider
    ):
        transport = transport_factory(
            responder=lambda batch: PushTransportError("Expo push request failed: 502")
        )

        with patch(f"{self.module}.get_sync_session", session_provider), patch(
            f"{self.module}.get_push_transport", return_value=transport
        ), patch.object(
            send_immediate_notification_task,
            "retry",
            side_effect=RuntimeError("Retry called"),
        ) as retry:
            with pytest.raises(RuntimeError, match="Retry called"):
                send_immediate_notification_task.run(
                    "test-request", sample_user.id, "Hello", "World"
                )

        retry.assert_called_once()
