import asyncio

from app.celery import celery
from app.db.session import get_sync_session
from app.providers.push_transport import get_push_transport
from app.services.notifications.scheduler import NotificationScheduler
from app.utils.context import request_id_scope
from app.utils.errors import NotificationProcessingError
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=30)
def process_due_notifications_task(self, request_id: str):
    """
    Periodic delivery sweep.

    Sends every pending notification whose scheduled time (and retry backoff,
    if any) has passed. Runs every few minutes from Celery Beat; overlapping
    runs are safe because every status change is a conditional update.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_process_due_notifications(request_id))


async def _async_process_due_notifications(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    with request_id_scope(request_id):
        for db_session in get_sync_session():
            try:
                scheduler = NotificationScheduler(db_session, get_push_transport())
                summary = await scheduler.process_due_notifications()

                return {
                    "success": True,
                    "summary": summary.model_dump(by_alias=True),
                    "request_id": request_id,
                }

            except NotificationProcessingError as e:
                logger.error(
                    f"Delivery sweep finished with storage failures: {e.message}"
                )
                return {
                    "success": False,
                    "error": e.message,
                    "summary": e.summary.model_dump(by_alias=True),
                    "request_id": request_id,
                }

            except Exception as e:
                logger.error(
                    f"Delivery sweep task exception: {str(e)}",
                    exc_info=True,
                )
                return {
                    "success": False,
                    "error": str(e),
                    "request_id": request_id,
                }
