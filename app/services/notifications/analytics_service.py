from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fastapi import Depends
from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from app.db.models import (
    DeliveryOutcome,
    NotificationLog,
    NotificationType,
    User,
)
from app.db.session import get_sync_session
from app.schemas.notification_schemas import (
    DailyDeliveryStats,
    FailedNotificationItem,
    OutcomeCount,
    TypeDeliveryStats,
    UserNotificationStats,
)
from app.utils.datetime_utils import days_ago, to_naive_utc
from app.utils.logging import get_logger

logger = get_logger()


class DeliveryAnalyticsService:
    """Read-only aggregates over the delivery audit log."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _user_token(self, user_id: str) -> Optional[str]:
        return self.db.scalar(select(User.push_token).where(User.id == user_id)) or None

    async def get_delivery_stats(
        self, start: datetime, end: datetime
    ) -> List[DailyDeliveryStats]:
        """Outcome counts per day between ``start`` and ``end``, newest day first."""
        day = func.date(NotificationLog.sent_at)
        rows = self.db.execute(
            select(day.label("day"), NotificationLog.outcome, func.count().label("count"))
            .where(
                and_(
                    NotificationLog.sent_at >= to_naive_utc(start),
                    NotificationLog.sent_at <= to_naive_utc(end),
                )
            )
            .group_by(day, NotificationLog.outcome)
        ).all()

        by_day: Dict[str, DailyDeliveryStats] = {}
        for row in rows:
            key = str(row.day)
            stats = by_day.setdefault(key, DailyDeliveryStats(date=key))
            stats.stats.append(OutcomeCount(outcome=row.outcome, count=row.count))
            stats.total += row.count

        return [by_day[key] for key in sorted(by_day, reverse=True)]

    async def get_type_stats(
        self,
        days: int = 7,
        recipient_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[TypeDeliveryStats]:
        conditions = [NotificationLog.sent_at >= days_ago(days, now)]
        if recipient_token is not None:
            conditions.append(NotificationLog.recipient_token == recipient_token)

        successful = func.sum(
            case((NotificationLog.outcome == DeliveryOutcome.OK, 1), else_=0)
        )
        failed = func.sum(
            case((NotificationLog.outcome == DeliveryOutcome.ERROR, 1), else_=0)
        )
        rows = self.db.execute(
            select(
                NotificationLog.notification_type,
                func.count().label("total"),
                successful.label("successful"),
                failed.label("failed"),
            )
            .where(and_(*conditions))
            .group_by(NotificationLog.notification_type)
        ).all()

        return [
            TypeDeliveryStats(
                type=row.notification_type,
                total=row.total,
                successful=row.successful or 0,
                failed=row.failed or 0,
                success_rate=round((row.successful or 0) / row.total * 100, 2),
            )
            for row in rows
        ]

    async def get_failed_notifications(self, limit: int = 100) -> List[FailedNotificationItem]:
        logs = self.db.scalars(
            select(NotificationLog)
            .where(NotificationLog.outcome == DeliveryOutcome.ERROR)
            .order_by(NotificationLog.sent_at.desc())
            .limit(limit)
        ).all()
        return [FailedNotificationItem.model_validate(log) for log in logs]

    async def get_user_delivery_logs(
        self,
        user_id: str,
        outcome: Optional[DeliveryOutcome] = None,
        notification_type: Optional[NotificationType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> Tuple[List[NotificationLog], int]:
        """Audit entries sent to the user's current push token, newest first."""
        token = self._user_token(user_id)
        if token is None:
            return [], 0

        conditions = [NotificationLog.recipient_token == token]
        if outcome is not None:
            conditions.append(NotificationLog.outcome == outcome)
        if notification_type is not None:
            conditions.append(NotificationLog.notification_type == notification_type)
        if start is not None:
            conditions.append(NotificationLog.sent_at >= to_naive_utc(start))
        if end is not None:
            conditions.append(NotificationLog.sent_at <= to_naive_utc(end))

        total = self.db.scalar(
            select(func.count(NotificationLog.id)).where(and_(*conditions))
        )
        logs = self.db.scalars(
            select(NotificationLog)
            .where(and_(*conditions))
            .order_by(NotificationLog.sent_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).all()
        return list(logs), total or 0

    async def get_user_stats(
        self, user_id: str, days: int = 7, now: Optional[datetime] = None
    ) -> UserNotificationStats:
        token = self._user_token(user_id)
        if token is None:
            return UserNotificationStats()

        by_type = await self.get_type_stats(days, recipient_token=token, now=now)
        total = sum(item.total for item in by_type)
        successful = sum(item.successful for item in by_type)

        return UserNotificationStats(
            total=total,
            successful=successful,
            failed=sum(item.failed for item in by_type),
            success_rate=round(successful / total * 100) if total else 0,
            by_type=by_type,
        )


def get_delivery_analytics_service(
    db: Session = Depends(get_sync_session),
) -> DeliveryAnalyticsService:
    return DeliveryAnalyticsService(db)
