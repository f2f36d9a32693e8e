from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, update
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import ScheduledNotification, ScheduledNotificationStatus
from app.utils.logging import get_logger

from .types import DeliveryItem, TransitionResult

logger = get_logger()


class RetryPolicy:
    """Bounded retries with linear backoff for failed delivery attempts.

    The retry counter is incremented first and the delay is
    ``retry_count * retry_delay``, so the first retry waits one delay unit.
    The failure that brings ``retry_count`` up to ``max_retries`` is final.
    """

    def __init__(self, db_session: Session, retry_delay_minutes: Optional[int] = None):
        self.db = db_session
        self.retry_delay_minutes = (
            retry_delay_minutes
            if retry_delay_minutes is not None
            else settings.NOTIFICATION_RETRY_DELAY_MINUTES
        )

    def backoff_for(self, retry_count: int) -> timedelta:
        return timedelta(minutes=self.retry_delay_minutes * retry_count)

    def apply_failure(
        self, item: DeliveryItem, error_message: str, now: datetime
    ) -> TransitionResult:
        """Re-queue or permanently fail the record behind ``item``.

        The update only matches while the record is still pending with the
        retry count observed at batching time, so applying the same ticket
        twice changes nothing the second time.
        """
        next_retry_count = item.retry_count + 1

        if next_retry_count >= item.max_retries:
            values = {
                "status": ScheduledNotificationStatus.FAILED,
                "retry_count": min(next_retry_count, item.max_retries),
                "last_error": error_message,
                "processed_at": now,
                "next_retry_at": None,
                "updated_at": now,
            }
            result = TransitionResult.FAILED
        else:
            values = {
                "retry_count": next_retry_count,
                "last_error": error_message,
                "next_retry_at": now + self.backoff_for(next_retry_count),
                "updated_at": now,
            }
            result = TransitionResult.RETRY_SCHEDULED

        stmt = (
            update(ScheduledNotification)
            .where(
                and_(
                    ScheduledNotification.id == item.notification_id,
                    ScheduledNotification.status == ScheduledNotificationStatus.PENDING,
                    ScheduledNotification.retry_count == item.retry_count,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        updated = self.db.execute(stmt).rowcount
        self.db.commit()

        if not updated:
            logger.debug(
                f"Notification {item.notification_id} already handled, skipping failure"
            )
            return TransitionResult.SKIPPED

        if result == TransitionResult.FAILED:
            logger.warning(
                f"Notification {item.notification_id} failed permanently after "
                f"{values['retry_count']} attempts: {error_message}"
            )
        else:
            logger.info(
                f"Notification {item.notification_id} retry {next_retry_count} "
                f"scheduled for {values['next_retry_at'].isoformat()}"
            )
        return result
