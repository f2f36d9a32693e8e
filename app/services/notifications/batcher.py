from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import and_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import (
    NotificationPriority,
    NotificationType,
    ScheduledNotification,
    ScheduledNotificationStatus,
)
from app.providers.push_transport import PushMessage, PushTransport
from app.providers.user_directory_provider import UserDirectory
from app.utils.logging import get_logger

from .types import (
    INVALID_TOKEN_ERROR,
    DeliveryItem,
    PreparedDelivery,
    ProcessingSummary,
    TransitionResult,
)

logger = get_logger()


def build_push_message(record: ScheduledNotification, token: str) -> PushMessage:
    return PushMessage(
        to=token,
        title=record.title,
        body=record.body,
        data=dict(record.payload or {}),
        priority="high" if record.priority == NotificationPriority.HIGH else "normal",
        category_id=(
            "attendance-reminder"
            if record.type == NotificationType.REMINDER
            else None
        ),
    )


class DeliveryBatcher:
    """Turns due records into transport-sized batches.

    Records without a usable token are failed on the spot, without a retry.
    The rest are grouped by token (first appearance order) and chunked.
    """

    def __init__(
        self,
        db_session: Session,
        user_directory: UserDirectory,
        transport: PushTransport,
        batch_size: Optional[int] = None,
    ):
        self.db = db_session
        self.user_directory = user_directory
        self.transport = transport
        if batch_size is None:
            batch_size = settings.NOTIFICATION_BATCH_SIZE
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.batch_size = min(batch_size, transport.max_batch_size)

    def reject(self, record_id: str, now: datetime) -> TransitionResult:
        stmt = (
            update(ScheduledNotification)
            .where(
                and_(
                    ScheduledNotification.id == record_id,
                    ScheduledNotification.status == ScheduledNotificationStatus.PENDING,
                )
            )
            .values(
                status=ScheduledNotificationStatus.FAILED,
                last_error=INVALID_TOKEN_ERROR,
                processed_at=now,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        updated = self.db.execute(stmt).rowcount
        self.db.commit()
        return TransitionResult.REJECTED if updated else TransitionResult.SKIPPED

    def prepare(
        self,
        records: Sequence[ScheduledNotification],
        now: datetime,
        summary: ProcessingSummary,
    ) -> PreparedDelivery:
        prepared = PreparedDelivery()
        recipients = self.user_directory.resolve(r.recipient_id for r in records)

        by_token: Dict[str, List[DeliveryItem]] = {}
        for record in records:
            info = recipients.get(record.recipient_id)
            token = info.delivery_token if info else None

            if not self.transport.is_valid_token(token):
                logger.warning(
                    f"Notification {record.id} rejected: {INVALID_TOKEN_ERROR} "
                    f"(user {record.recipient_id})"
                )
                try:
                    result: Optional[TransitionResult] = self.reject(record.id, now)
                except SQLAlchemyError as e:
                    self.db.rollback()
                    logger.error(
                        f"Failed to reject notification {record.id}: {str(e)}",
                        exc_info=True,
                    )
                    result = None
                summary.record(result)
                if result == TransitionResult.REJECTED:
                    prepared.rejected_ids.append(record.id)
                continue

            by_token.setdefault(token, []).append(
                DeliveryItem(
                    notification_id=record.id,
                    retry_count=record.retry_count,
                    max_retries=record.max_retries,
                    notification_type=record.type,
                    priority=record.priority,
                    message=build_push_message(record, token),
                )
            )

        items = [item for group in by_token.values() for item in group]
        prepared.batches = [
            items[i : i + self.batch_size]
            for i in range(0, len(items), self.batch_size)
        ]
        return prepared
