from typing import Any, Dict, List, Optional
from datetime import datetime, date
from sqlalchemy import (
    JSON,
    String,
    Boolean,
    Integer,
    ForeignKey,
    Enum,
    Index,
    CheckConstraint,
    DateTime,
    Date,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum

from app.utils.datetime_utils import naive_utc_now

from .custom_types import StringUUID, new_uuid


class Base(DeclarativeBase):
    pass


# Enums
class NotificationType(enum.Enum):
    REMINDER = "reminder"
    SUMMARY = "summary"
    ACHIEVEMENT = "achievement"
    SYSTEM = "system"


class NotificationPriority(enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ScheduledNotificationStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (
    ScheduledNotificationStatus.SENT,
    ScheduledNotificationStatus.FAILED,
    ScheduledNotificationStatus.CANCELLED,
)


class DeliveryOutcome(enum.Enum):
    OK = "ok"
    ERROR = "error"


class ClassType(enum.Enum):
    LECTURE = "lecture"
    LAB = "lab"
    TUTORIAL = "tutorial"
    SEMINAR = "seminar"
    OTHER = "other"


class AttendanceStatus(enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now
    )


# Models
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(StringUUID, primary_key=True, default=new_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(
        String(320), unique=True, nullable=False
    )  # RFC 5321 max length
    push_token: Mapped[Optional[str]] = mapped_column(String(255))
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    last_active: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    scheduled_notifications: Mapped[List["ScheduledNotification"]] = relationship(
        back_populates="recipient", cascade="all, delete-orphan"
    )
    timetable_entries: Mapped[List["TimetableEntry"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    attendance_records: Mapped[List["AttendanceRecord"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    # Constraints
    __table_args__ = (
        Index("idx_users_email", "email"),
        Index("idx_users_push_token", "push_token"),
    )


class ScheduledNotification(Base, AuditMixin):
    __tablename__ = "scheduled_notifications"

    id: Mapped[str] = mapped_column(StringUUID, primary_key=True, default=new_uuid)
    recipient_id: Mapped[str] = mapped_column(
        StringUUID, ForeignKey("users.id"), nullable=False
    )

    # Content
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    body: Mapped[str] = mapped_column(String(500), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # Scheduling
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType), default=NotificationType.REMINDER, nullable=False
    )
    priority: Mapped[NotificationPriority] = mapped_column(
        Enum(NotificationPriority), default=NotificationPriority.NORMAL, nullable=False
    )

    # Delivery state
    status: Mapped[ScheduledNotificationStatus] = mapped_column(
        Enum(ScheduledNotificationStatus),
        default=ScheduledNotificationStatus.PENDING,
        nullable=False,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    delivery_receipt_id: Mapped[Optional[str]] = mapped_column(String(255))
    last_error: Mapped[Optional[str]] = mapped_column(String(1000))

    # Retry bookkeeping
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    recipient: Mapped["User"] = relationship(back_populates="scheduled_notifications")

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "retry_count >= 0 AND retry_count <= max_retries",
            name="ck_scheduled_notifications_retry_bound",
        ),
        Index("idx_scheduled_notifications_status_scheduled", "status", "scheduled_for"),
        Index(
            "idx_scheduled_notifications_recipient_scheduled",
            "recipient_id",
            "scheduled_for",
        ),
        Index("idx_scheduled_notifications_status_retry", "status", "next_retry_at"),
        Index("idx_scheduled_notifications_type", "type"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class NotificationLog(Base):
    """Append-only record of a single push gateway attempt."""

    __tablename__ = "notification_logs"

    id: Mapped[str] = mapped_column(StringUUID, primary_key=True, default=new_uuid)
    recipient_token: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    body: Mapped[str] = mapped_column(String(500), nullable=False)
    payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)

    outcome: Mapped[DeliveryOutcome] = mapped_column(
        Enum(DeliveryOutcome), nullable=False
    )
    receipt_id: Mapped[Optional[str]] = mapped_column(String(255))
    error_message: Mapped[Optional[str]] = mapped_column(String(1000))

    # Analytics
    notification_type: Mapped[Optional[NotificationType]] = mapped_column(
        Enum(NotificationType)
    )
    priority: Mapped[Optional[NotificationPriority]] = mapped_column(
        Enum(NotificationPriority)
    )

    sent_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )

    # Constraints
    __table_args__ = (
        Index("idx_notification_logs_sent_at", "sent_at"),
        Index("idx_notification_logs_outcome_sent_at", "outcome", "sent_at"),
        Index("idx_notification_logs_type_sent_at", "notification_type", "sent_at"),
        Index("idx_notification_logs_recipient_token", "recipient_token"),
    )


class TimetableEntry(Base, AuditMixin):
    __tablename__ = "timetable_entries"

    id: Mapped[str] = mapped_column(StringUUID, primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(
        StringUUID, ForeignKey("users.id"), nullable=False
    )
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    subject_code: Mapped[str] = mapped_column(String(50), nullable=False)
    instructor: Mapped[Optional[str]] = mapped_column(String(200))

    # 0 = Sunday ... 6 = Saturday
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)

    location: Mapped[Optional[str]] = mapped_column(String(200))
    class_type: Mapped[ClassType] = mapped_column(
        Enum(ClassType), default=ClassType.LECTURE, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notification_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="timetable_entries")

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "day_of_week >= 0 AND day_of_week <= 6",
            name="ck_timetable_entries_day_of_week",
        ),
        Index("idx_timetable_entries_user_day", "user_id", "day_of_week"),
        Index("idx_timetable_entries_is_active", "is_active"),
    )


class AttendanceRecord(Base, AuditMixin):
    __tablename__ = "attendance_records"

    id: Mapped[str] = mapped_column(StringUUID, primary_key=True, default=new_uuid)
    user_id: Mapped[str] = mapped_column(
        StringUUID, ForeignKey("users.id"), nullable=False
    )
    timetable_entry_id: Mapped[Optional[str]] = mapped_column(
        StringUUID, ForeignKey("timetable_entries.id")
    )
    subject: Mapped[str] = mapped_column(String(200), nullable=False)
    attended_on: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus), nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="attendance_records")

    # Constraints
    __table_args__ = (
        Index("idx_attendance_records_user_date", "user_id", "attended_on"),
        Index("idx_attendance_records_entry_date", "timetable_entry_id", "attended_on"),
    )
