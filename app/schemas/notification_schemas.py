from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.db.models import (
    DeliveryOutcome,
    NotificationPriority,
    NotificationType,
    ScheduledNotificationStatus,
)
from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


# Requests
class ScheduleNotificationRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=100, description="Notification title")
    body: str = Field(..., min_length=1, max_length=500, description="Notification body")
    payload: Dict[str, Any] = Field(
        default_factory=dict, description="Opaque data delivered with the message"
    )
    scheduled_for: Optional[datetime] = Field(
        None, description="Delivery time; defaults to now"
    )
    type: NotificationType = Field(
        NotificationType.REMINDER, description="Notification category"
    )
    priority: NotificationPriority = Field(
        NotificationPriority.NORMAL, description="Delivery priority"
    )


class BatchScheduleNotificationRequest(BaseModel):
    notifications: List[ScheduleNotificationRequest] = Field(
        ..., min_length=1, max_length=100, description="Notifications to schedule"
    )


class UpdateNotificationRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    body: Optional[str] = Field(None, min_length=1, max_length=500)
    payload: Optional[Dict[str, Any]] = None
    scheduled_for: Optional[datetime] = None
    type: Optional[NotificationType] = None
    priority: Optional[NotificationPriority] = None


class TestNotificationRequest(BaseModel):
    title: str = Field("🧪 Test Notification", min_length=1, max_length=100)
    body: str = Field(
        "This is a test notification from your attendance app",
        min_length=1,
        max_length=500,
    )
    data: Dict[str, Any] = Field(default_factory=lambda: {"type": "test"})


# Responses
class ScheduledNotificationResponse(BaseModel):
    id: str = Field(..., description="Notification ID")
    recipient_id: str = Field(..., description="Recipient user ID")
    title: str
    body: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    scheduled_for: datetime
    type: NotificationType
    priority: NotificationPriority
    status: ScheduledNotificationStatus
    processed_at: Optional[datetime] = None
    delivery_receipt_id: Optional[str] = None
    last_error: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    next_retry_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class NotificationLogResponse(BaseModel):
    """Delivery audit entry as exposed to its recipient (token omitted)."""

    id: str
    title: str
    body: str
    payload: Optional[Dict[str, Any]] = None
    outcome: DeliveryOutcome
    receipt_id: Optional[str] = None
    error_message: Optional[str] = None
    notification_type: Optional[NotificationType] = None
    priority: Optional[NotificationPriority] = None
    sent_at: datetime


class FailedNotificationItem(BaseModel):
    """Recent delivery failure; the push token is not exposed."""

    id: str
    title: str
    notification_type: Optional[NotificationType] = None
    error_message: Optional[str] = None
    sent_at: datetime


class OutcomeCount(BaseModel):
    outcome: DeliveryOutcome
    count: int


class DailyDeliveryStats(BaseModel):
    date: str = Field(..., description="Day in YYYY-MM-DD")
    stats: List[OutcomeCount] = Field(default_factory=list)
    total: int = 0


class TypeDeliveryStats(BaseModel):
    type: Optional[NotificationType] = None
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = Field(0, description="Percentage rounded to 2 decimals")


class UserNotificationStats(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: int = Field(0, description="Rounded percentage")
    by_type: List[TypeDeliveryStats] = Field(default_factory=list)


class PushTicketResponse(BaseModel):
    outcome: DeliveryOutcome
    receipt_id: Optional[str] = None
    message: Optional[str] = None
