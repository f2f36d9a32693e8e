from .attendance_reminder_scheduler import attendance_reminder_scheduler_task
from .notification_cleanup import notification_cleanup_task
from .process_due_notifications import process_due_notifications_task

__all__ = [
    "process_due_notifications_task",
    "attendance_reminder_scheduler_task",
    "notification_cleanup_task",
]
