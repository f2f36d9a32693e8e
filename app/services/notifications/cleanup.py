from datetime import datetime
from typing import Optional

from sqlalchemy import and_, delete
from sqlalchemy.orm import Session

from app.db.models import NotificationLog, ScheduledNotification, TERMINAL_STATUSES
from app.utils.datetime_utils import days_ago
from app.utils.logging import get_logger

logger = get_logger()


class NotificationCleanupSweeper:
    """Retention-based purge of terminal records and delivery logs."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def cleanup_old_notifications(
        self, retention_days: int, now: Optional[datetime] = None
    ) -> int:
        cutoff = days_ago(retention_days, now)
        result = self.db.execute(
            delete(ScheduledNotification)
            .where(
                and_(
                    ScheduledNotification.status.in_(TERMINAL_STATUSES),
                    ScheduledNotification.processed_at.is_not(None),
                    ScheduledNotification.processed_at < cutoff,
                )
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        logger.info(
            f"Removed {result.rowcount} notifications processed before {cutoff.isoformat()}"
        )
        return result.rowcount

    def cleanup_old_delivery_logs(
        self, retention_days: int, now: Optional[datetime] = None
    ) -> int:
        cutoff = days_ago(retention_days, now)
        result = self.db.execute(
            delete(NotificationLog)
            .where(NotificationLog.sent_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        logger.info(
            f"Removed {result.rowcount} delivery logs sent before {cutoff.isoformat()}"
        )
        return result.rowcount
