from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import ScheduledNotification, ScheduledNotificationStatus


class DueNotificationSelector:
    """Read-only queries for records eligible for a delivery attempt.

    ``scheduled_for`` and ``next_retry_at`` are independent gates: a record is
    due only once both have passed.
    """

    def __init__(
        self,
        db_session: Session,
        page_size: Optional[int] = None,
        retry_page_size: Optional[int] = None,
    ):
        self.db = db_session
        self.page_size = (
            page_size if page_size is not None else settings.NOTIFICATION_PAGE_SIZE
        )
        self.retry_page_size = (
            retry_page_size
            if retry_page_size is not None
            else settings.NOTIFICATION_RETRY_PAGE_SIZE
        )

    def get_due(
        self, now: datetime, limit: Optional[int] = None
    ) -> List[ScheduledNotification]:
        """Pending records whose scheduled time has passed, oldest first."""
        stmt = (
            select(ScheduledNotification)
            .where(
                and_(
                    ScheduledNotification.status == ScheduledNotificationStatus.PENDING,
                    ScheduledNotification.scheduled_for <= now,
                    or_(
                        ScheduledNotification.next_retry_at.is_(None),
                        ScheduledNotification.next_retry_at <= now,
                    ),
                )
            )
            .order_by(ScheduledNotification.scheduled_for.asc())
            .limit(limit if limit is not None else self.page_size)
        )
        return list(self.db.scalars(stmt).all())

    def get_retry_due(
        self, now: datetime, limit: Optional[int] = None
    ) -> List[ScheduledNotification]:
        """Previously failed records whose backoff has elapsed."""
        stmt = (
            select(ScheduledNotification)
            .where(
                and_(
                    ScheduledNotification.status == ScheduledNotificationStatus.PENDING,
                    ScheduledNotification.retry_count > 0,
                    ScheduledNotification.next_retry_at.is_not(None),
                    ScheduledNotification.next_retry_at <= now,
                    ScheduledNotification.scheduled_for <= now,
                )
            )
            .order_by(ScheduledNotification.next_retry_at.asc())
            .limit(limit if limit is not None else self.retry_page_size)
        )
        return list(self.db.scalars(stmt).all())

    def get_all_due(self, now: datetime) -> List[ScheduledNotification]:
        """Both lanes merged, each record once, oldest effective due time first."""
        merged: List[ScheduledNotification] = []
        seen = set()
        for record in self.get_due(now) + self.get_retry_due(now):
            if record.id in seen:
                continue
            seen.add(record.id)
            merged.append(record)
        merged.sort(key=effective_due_at)
        return merged


def effective_due_at(record: ScheduledNotification) -> datetime:
    if record.next_retry_at and record.next_retry_at > record.scheduled_for:
        return record.next_retry_at
    return record.scheduled_for
