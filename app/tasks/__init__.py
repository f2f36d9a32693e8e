from .background import *
from .cron import *

__all__ = [
    "send_immediate_notification_task",
    # Scheduled/Cron Tasks
    "process_due_notifications_task",
    "attendance_reminder_scheduler_task",
    "notification_cleanup_task",
]
