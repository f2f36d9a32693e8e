import asyncio
from typing import Any, Dict, Optional

from app.celery import celery
from app.db.session import get_sync_session
from app.providers.push_transport import get_push_transport
from app.services.notifications.scheduler import NotificationScheduler
from app.utils.context import request_id_scope
from app.utils.errors import BusinessLogicError, NotFoundError
from app.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def send_immediate_notification_task(
    self,
    request_id: str,
    user_id: str,
    title: str,
    body: str,
    data: Optional[Dict[str, Any]] = None,
):
    """
    Send one push notification right away, outside the delivery schedule.

    Gateway failures are retried by Celery; unknown users and users without
    a usable push token are not.

    Args:
        request_id: The request ID from the original HTTP request
        user_id: Recipient user ID
        title: Notification title
        body: Notification body
        data: Optional data delivered with the message
    """
    try:
        return asyncio.run(
            _async_send_immediate_notification(request_id, user_id, title, body, data)
        )
    except (BusinessLogicError, NotFoundError) as e:
        get_logger().bind(request_id=request_id).warning(
            f"Immediate notification to user {user_id} not sent: {e.message}"
        )
        return {
            "success": False,
            "error": e.message,
            "error_code": e.error_code,
            "request_id": request_id,
        }
    except Exception as e:
        get_logger().bind(request_id=request_id).error(
            f"Immediate notification to user {user_id} failed: {str(e)}",
            exc_info=True,
        )
        raise self.retry(exc=e)


async def _async_send_immediate_notification(
    request_id: str,
    user_id: str,
    title: str,
    body: str,
    data: Optional[Dict[str, Any]],
):
    with request_id_scope(request_id):
        for db_session in get_sync_session():
            scheduler = NotificationScheduler(db_session, get_push_transport())
            ticket = await scheduler.send_immediate_notification(
                user_id, title, body, data
            )

            return {
                "success": ticket.is_ok,
                "outcome": ticket.outcome.value,
                "receipt_id": ticket.receipt_id,
                "error": ticket.message,
                "request_id": request_id,
            }
