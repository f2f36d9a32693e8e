from datetime import datetime, timedelta
from typing import Optional, Set, Tuple

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import (
    AttendanceRecord,
    NotificationPriority,
    NotificationType,
    ScheduledNotification,
    ScheduledNotificationStatus,
    TimetableEntry,
    User,
)
from app.utils.datetime_utils import (
    naive_utc_now,
    parse_clock_time,
    sunday_based_weekday,
    to_naive_utc,
)
from app.utils.logging import get_logger

logger = get_logger()

REMINDER_TITLE = "📚 Attendance Reminder"


class AttendanceReminderService:
    """Creates end-of-class reminders for classes without attendance marked.

    Timetable times are interpreted as UTC clock times on the current day.
    """

    def __init__(
        self,
        db_session: Session,
        reminder_offset_minutes: Optional[int] = None,
        max_retries: Optional[int] = None,
    ):
        self.db = db_session
        self.reminder_offset = timedelta(
            minutes=(
                reminder_offset_minutes
                if reminder_offset_minutes is not None
                else settings.REMINDER_OFFSET_MINUTES
            )
        )
        self.max_retries = (
            max_retries if max_retries is not None else settings.NOTIFICATION_MAX_RETRIES
        )

    def _todays_entries(self, weekday: int):
        stmt = (
            select(TimetableEntry)
            .join(User, TimetableEntry.user_id == User.id)
            .where(
                and_(
                    User.push_token.is_not(None),
                    User.push_token != "",
                    User.notifications_enabled.is_(True),
                    TimetableEntry.day_of_week == weekday,
                    TimetableEntry.is_active.is_(True),
                    TimetableEntry.notification_enabled.is_(True),
                )
            )
            .order_by(TimetableEntry.user_id, TimetableEntry.start_time)
        )
        return self.db.scalars(stmt).all()

    def _attended_entry_ids(self, day) -> Set[str]:
        rows = self.db.scalars(
            select(AttendanceRecord.timetable_entry_id).where(
                and_(
                    AttendanceRecord.attended_on == day,
                    AttendanceRecord.timetable_entry_id.is_not(None),
                )
            )
        ).all()
        return set(rows)

    def _existing_reminders(self, start: datetime, end: datetime) -> Set[Tuple[str, str]]:
        """(recipient_id, classId) pairs already holding a pending reminder today."""
        rows = self.db.scalars(
            select(ScheduledNotification).where(
                and_(
                    ScheduledNotification.type == NotificationType.REMINDER,
                    ScheduledNotification.status == ScheduledNotificationStatus.PENDING,
                    ScheduledNotification.scheduled_for >= start,
                    ScheduledNotification.scheduled_for < end,
                )
            )
        ).all()
        return {
            (row.recipient_id, str((row.payload or {}).get("classId")))
            for row in rows
        }

    async def schedule_attendance_reminders(self, now: Optional[datetime] = None) -> int:
        """Schedule today's reminders and return how many were created."""
        now = to_naive_utc(now) if now else naive_utc_now()
        today = now.date()
        start_of_day = datetime.combine(today, datetime.min.time())

        entries = self._todays_entries(sunday_based_weekday(today))
        if not entries:
            logger.info("No classes scheduled today, no reminders to create")
            return 0

        attended = self._attended_entry_ids(today)
        existing = self._existing_reminders(
            start_of_day, start_of_day + timedelta(days=2)
        )

        scheduled_count = 0
        for entry in entries:
            if entry.id in attended or (entry.user_id, entry.id) in existing:
                continue

            try:
                end_time = parse_clock_time(entry.end_time)
            except ValueError:
                logger.warning(
                    f"Timetable entry {entry.id} has invalid end time {entry.end_time!r}"
                )
                continue

            remind_at = datetime.combine(today, end_time) + self.reminder_offset
            if remind_at <= now:
                continue

            self.db.add(
                ScheduledNotification(
                    recipient_id=entry.user_id,
                    title=REMINDER_TITLE,
                    body=f"Don't forget to mark attendance for {entry.subject}",
                    payload={
                        "type": "attendance_reminder",
                        "classId": entry.id,
                        "subjectName": entry.subject,
                        "subjectCode": entry.subject_code,
                        "classTime": f"{entry.start_time} - {entry.end_time}",
                    },
                    scheduled_for=remind_at,
                    type=NotificationType.REMINDER,
                    priority=NotificationPriority.NORMAL,
                    status=ScheduledNotificationStatus.PENDING,
                    retry_count=0,
                    max_retries=self.max_retries,
                )
            )
            existing.add((entry.user_id, entry.id))
            scheduled_count += 1

        self.db.commit()
        logger.info(f"Scheduled {scheduled_count} attendance reminders")
        return scheduled_count
