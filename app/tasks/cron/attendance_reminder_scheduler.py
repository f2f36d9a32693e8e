import asyncio

from app.celery import celery
from app.db.session import get_sync_session
from app.services.notifications.reminder_service import AttendanceReminderService
from app.utils.context import request_id_scope
from app.utils.datetime_utils import naive_utc_now
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def attendance_reminder_scheduler_task(self, request_id: str):
    """
    Daily task creating today's end-of-class attendance reminders.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_attendance_reminder_scheduler(request_id))


async def _async_attendance_reminder_scheduler(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    with request_id_scope(request_id):
        for db_session in get_sync_session():
            try:
                now = naive_utc_now()
                scheduled_count = await AttendanceReminderService(
                    db_session
                ).schedule_attendance_reminders(now)

                return {
                    "success": True,
                    "scheduled_count": scheduled_count,
                    "current_date": now.date().isoformat(),
                    "request_id": request_id,
                }

            except Exception as e:
                logger.error(
                    f"Attendance reminder scheduler task exception: {str(e)}",
                    exc_info=True,
                )
                return {
                    "success": False,
                    "error": str(e),
                    "request_id": request_id,
                }
