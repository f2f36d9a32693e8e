import asyncio

from app.celery import celery
from app.config.settings import settings
from app.db.session import get_sync_session
from app.services.notifications.cleanup import NotificationCleanupSweeper
from app.utils.context import request_id_scope
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=300)
def notification_cleanup_task(self, request_id: str):
    """
    Daily retention sweep.

    Deletes terminal notifications processed more than
    NOTIFICATION_RETENTION_DAYS ago and delivery logs older than
    DELIVERY_LOG_RETENTION_DAYS.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_notification_cleanup(request_id))


async def _async_notification_cleanup(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    with request_id_scope(request_id):
        for db_session in get_sync_session():
            try:
                sweeper = NotificationCleanupSweeper(db_session)
                deleted_notifications = sweeper.cleanup_old_notifications(
                    settings.NOTIFICATION_RETENTION_DAYS
                )
                deleted_logs = sweeper.cleanup_old_delivery_logs(
                    settings.DELIVERY_LOG_RETENTION_DAYS
                )

                logger.info(
                    f"Notification cleanup completed: {deleted_notifications} "
                    f"notifications, {deleted_logs} delivery logs removed"
                )
                return {
                    "success": True,
                    "deleted_notifications": deleted_notifications,
                    "deleted_logs": deleted_logs,
                    "request_id": request_id,
                }

            except Exception as e:
                db_session.rollback()
                logger.error(
                    f"Notification cleanup task exception: {str(e)}",
                    exc_info=True,
                )
                return {
                    "success": False,
                    "error": str(e),
                    "request_id": request_id,
                }
