from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
result_backend = f"redis://:{settings.REDIS_PASSWORD}@{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"

# Task Discovery
include = ["app.tasks"]

# Timezone Configuration
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 10 * 60  # 10 minutes
task_soft_time_limit = 8 * 60  # 8 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task Retry Configuration
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = 60  # 60 seconds
task_max_retries = 3

beat_schedule = {
    # Delivery sweep over due and retry-eligible notifications
    "process-due-notifications": {
        "task": "app.tasks.cron.process_due_notifications.process_due_notifications_task",
        "schedule": crontab(
            minute=f"*/{settings.NOTIFICATION_PROCESS_INTERVAL_MINUTES}"
        ),
        "args": ("process_due_notifications_cron",),
    },
    # Reminder generation from timetables - 00:15 UTC daily
    "attendance-reminder-scheduler": {
        "task": "app.tasks.cron.attendance_reminder_scheduler.attendance_reminder_scheduler_task",
        "schedule": crontab(hour=0, minute=15),
        "args": ("attendance_reminder_scheduler_cron",),
    },
    # Retention cleanup - 02:00 UTC daily
    "notification-cleanup": {
        "task": "app.tasks.cron.notification_cleanup.notification_cleanup_task",
        "schedule": crontab(hour=2, minute=0),
        "args": ("notification_cleanup_cron",),
    },
}

# Default Queue
task_default_queue = "attendance"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
