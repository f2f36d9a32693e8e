import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.db.models import (
    DeliveryOutcome,
    NotificationLog,
    NotificationType,
    ScheduledNotificationStatus,
)
from app.db.session import get_sync_session
from app.main import app
from app.providers.push_transport import get_push_transport
from app.utils.datetime_utils import naive_utc_now

API = "/api/v1"


@pytest.fixture
def client(db_session, fake_transport):
    def override_get_sync_session():
        yield db_session

    app.dependency_overrides[get_sync_session] = override_get_sync_session
    app.dependency_overrides[get_push_transport] = lambda: fake_transport

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _notifications_url(user_id, suffix=""):
    return f"{API}/users/{user_id}/notifications{suffix}"


class TestHealth:
    def test_health_check(self, client):
        response = client.get(f"{API}/health/")

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"

    def test_request_id_is_echoed(self, client):
        request_id = str(uuid.uuid4())

        response = client.get(f"{API}/health/", headers={"X-Request-ID": request_id})

        assert response.headers["X-Request-ID"] == request_id
        assert response.json()["request_id"] == request_id


class TestUserSettings:
    def test_update_push_token(self, client, sample_user):
        response = client.put(
            f"{API}/users/{sample_user.id}/push-token",
            json={"pushToken": "ExponentPushToken[new-device]"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["pushToken"] == "ExponentPushToken[new-device]"

    def test_update_push_token_for_unknown_user(self, client):
        response = client.put(
            f"{API}/users/{uuid.uuid4()}/push-token",
            json={"pushToken": "ExponentPushToken[new-device]"},
        )

        assert response.status_code == 404
        assert response.json()["meta"]["error_code"] == "USER_NOT_FOUND"

    def test_missing_push_token_is_a_validation_error(self, client, sample_user):
        response = client.put(f"{API}/users/{sample_user.id}/push-token", json={})

        assert response.status_code == 422

    def test_disable_notifications(self, client, sample_user):
        response = client.put(
            f"{API}/users/{sample_user.id}/notification-preferences",
            json={"enabled": False},
        )

        assert response.status_code == 200
        assert response.json()["data"]["notificationsEnabled"] is False


class TestScheduledNotifications:
    def test_schedule_notification(self, client, sample_user):
        scheduled_for = (naive_utc_now() + timedelta(hours=1)).isoformat()

        response = client.post(
            _notifications_url(sample_user.id),
            json={
                "title": "📚 Attendance Reminder",
                "body": "Don't forget to mark attendance for Databases",
                "payload": {"classId": "class-1"},
                "scheduledFor": scheduled_for,
                "priority": "high",
            },
        )

        data = response.json()["data"]
        assert response.status_code == 201
        assert data["status"] == "pending"
        assert data["priority"] == "high"
        assert data["retryCount"] == 0
        assert data["recipientId"] == sample_user.id
        assert data["payload"] == {"classId": "class-1"}

    def test_title_over_limit_is_rejected(self, client, sample_user):
        response = client.post(
            _notifications_url(sample_user.id), json={"title": "x" * 101, "body": "b"}
        )

        assert response.status_code == 422

    def test_batch_schedule(self, client, sample_user):
        response = client.post(
            _notifications_url(sample_user.id, "/batch"),
            json={
                "notifications": [
                    {"title": "One", "body": "First"},
                    {"title": "Two", "body": "Second", "type": "summary"},
                ]
            },
        )

        data = response.json()["data"]
        assert response.status_code == 201
        assert [item["title"] for item in data] == ["One", "Two"]
        assert data[1]["type"] == "summary"

    def test_list_with_filters_and_pagination(
        self, client, sample_user, notification_factory, now
    ):
        for minutes in range(3):
            notification_factory(sample_user, scheduled_for=now + timedelta(minutes=minutes))
        notification_factory(
            sample_user, status=ScheduledNotificationStatus.SENT, processed_at=now
        )

        response = client.get(
            _notifications_url(sample_user.id),
            params={"status": "pending", "page": 1, "per_page": 2},
        )

        body = response.json()
        assert response.status_code == 200
        assert len(body["data"]) == 2
        assert body["pagination"]["total"] == 3
        assert body["pagination"]["has_next"] is True

    def test_update_pending_notification(self, client, sample_user, notification_factory, now):
        notification = notification_factory(sample_user, scheduled_for=now + timedelta(days=1))

        response = client.put(
            _notifications_url(sample_user.id, f"/{notification.id}"),
            json={"title": "Rescheduled", "priority": "low"},
        )

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["title"] == "Rescheduled"
        assert data["priority"] == "low"

    def test_reschedule_and_retype_pending_notification(
        self, client, sample_user, notification_factory, now, reload
    ):
        notification = notification_factory(sample_user, scheduled_for=now + timedelta(days=1))

        response = client.put(
            _notifications_url(sample_user.id, f"/{notification.id}"),
            json={"scheduledFor": "2025-03-12T09:30:00+07:00", "type": "summary"},
        )

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["scheduledFor"] == "2025-03-12T02:30:00"
        assert data["type"] == "summary"
        assert reload(notification).type == NotificationType.SUMMARY

    @pytest.mark.parametrize("method", ["put", "delete"])
    def test_malformed_notification_id_is_a_validation_error(
        self, client, sample_user, method
    ):
        url = _notifications_url(sample_user.id, "/not-a-uuid")
        kwargs = {"json": {"title": "New"}} if method == "put" else {}

        response = getattr(client, method)(url, **kwargs)

        assert response.status_code == 422
        assert response.json()["meta"]["error_code"] == "VALIDATION_ERROR"

    def test_malformed_user_id_is_a_validation_error(self, client):
        response = client.put(
            f"{API}/users/12345/push-token",
            json={"pushToken": "ExponentPushToken[new-device]"},
        )

        assert response.status_code == 422

    def test_cancel_twice(self, client, sample_user, notification_factory, now):
        notification = notification_factory(sample_user, scheduled_for=now + timedelta(days=1))
        url = _notifications_url(sample_user.id, f"/{notification.id}")

        first = client.delete(url)
        second = client.delete(url)

        assert first.status_code == 200
        assert first.json()["data"]["status"] == "cancelled"
        assert second.status_code == 400
        assert second.json()["meta"]["error_code"] == "NOTIFICATION_ALREADY_PROCESSED"

    def test_cancel_unknown_notification(self, client, sample_user):
        response = client.delete(_notifications_url(sample_user.id, f"/{uuid.uuid4()}"))

        assert response.status_code == 404


class TestDeliveryEndpoints:
    def test_send_test_notification_then_read_logs_and_stats(
        self, client, sample_user, fake_transport
    ):
        sent = client.post(
            _notifications_url(sample_user.id, "/test"), json={"title": "Ping"}
        )
        logs = client.get(_notifications_url(sample_user.id, "/logs"))
        stats = client.get(_notifications_url(sample_user.id, "/stats"), params={"days": 1})

        assert sent.status_code == 200
        assert sent.json()["data"]["outcome"] == "ok"
        assert fake_transport.sent_messages[0].title == "Ping"

        log_items = logs.json()["data"]
        assert len(log_items) == 1
        assert log_items[0]["outcome"] == "ok"
        assert "recipientToken" not in log_items[0]

        stats_data = stats.json()["data"]
        assert stats_data["total"] == 1
        assert stats_data["successRate"] == 100
        assert stats_data["byType"][0]["type"] == "system"
        assert stats_data["byType"][0]["successful"] == 1

    def test_test_notification_without_token(self, client, user_factory):
        user = user_factory(push_token=None)

        response = client.post(_notifications_url(user.id, "/test"), json={})

        assert response.status_code == 400
        assert response.json()["meta"]["error_code"] == "INVALID_PUSH_TOKEN"


class TestDeliveryAnalyticsEndpoints:
    @pytest.fixture
    def delivery_logs(self, db_session):
        sent_at = naive_utc_now() - timedelta(hours=1)
        for outcome, error in ((DeliveryOutcome.OK, None), (DeliveryOutcome.ERROR, "DeviceNotRegistered")):
            db_session.add(
                NotificationLog(
                    recipient_token="ExponentPushToken[someone]",
                    title="📚 Attendance Reminder",
                    body="Don't forget to mark attendance",
                    outcome=outcome,
                    receipt_id="receipt" if outcome == DeliveryOutcome.OK else None,
                    error_message=error,
                    notification_type=NotificationType.REMINDER,
                    sent_at=sent_at,
                )
            )
        db_session.commit()

    def test_delivery_stats(self, client, delivery_logs):
        response = client.get(f"{API}/notifications/delivery-stats")

        data = response.json()["data"]
        assert response.status_code == 200
        assert sum(day["total"] for day in data) == 2

    def test_inverted_date_range_is_rejected(self, client):
        response = client.get(
            f"{API}/notifications/delivery-stats",
            params={"startDate": "2025-03-10T00:00:00", "endDate": "2025-03-01T00:00:00"},
        )

        assert response.status_code == 400
        assert response.json()["meta"]["error_code"] == "INVALID_DATE_RANGE"

    def test_type_stats(self, client, delivery_logs):
        response = client.get(f"{API}/notifications/type-stats", params={"days": 1})

        data = response.json()["data"]
        assert response.status_code == 200
        assert data[0]["type"] == "reminder"
        assert data[0]["total"] == 2
        assert data[0]["failed"] == 1

    def test_recent_failures_hide_push_tokens(self, client, delivery_logs):
        response = client.get(f"{API}/notifications/failed", params={"limit": 10})

        data = response.json()["data"]
        assert response.status_code == 200
        assert len(data) == 1
        assert data[0]["errorMessage"] == "DeviceNotRegistered"
        assert "recipientToken" not in data[0]
