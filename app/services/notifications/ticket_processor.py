from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import and_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import (
    NotificationLog,
    NotificationPriority,
    NotificationType,
    ScheduledNotification,
    ScheduledNotificationStatus,
)
from app.providers.push_transport import PushMessage, PushTicket
from app.utils.logging import get_logger

from .retry_policy import RetryPolicy
from .types import DeliveryItem, ProcessingSummary, TransitionResult

logger = get_logger()


class NotificationAuditLogger:
    """Best-effort writer for delivery audit entries.

    A failed write is logged and rolled back on its own; it never touches the
    status of the notification it describes.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def record(
        self,
        message: PushMessage,
        ticket: PushTicket,
        sent_at: datetime,
        notification_type: Optional[NotificationType] = None,
        priority: Optional[NotificationPriority] = None,
    ) -> bool:
        try:
            self.db.add(
                NotificationLog(
                    recipient_token=message.to,
                    title=message.title,
                    body=message.body,
                    payload=dict(message.data or {}),
                    outcome=ticket.outcome,
                    receipt_id=ticket.receipt_id,
                    error_message=ticket.message,
                    notification_type=notification_type,
                    priority=priority,
                    sent_at=sent_at,
                )
            )
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Failed to write delivery log for {message.to}: {str(e)}")
            return False


class TicketProcessor:
    """Applies gateway tickets to their originating records."""

    def __init__(
        self,
        db_session: Session,
        retry_policy: RetryPolicy,
        audit_logger: NotificationAuditLogger,
    ):
        self.db = db_session
        self.retry_policy = retry_policy
        self.audit_logger = audit_logger

    def mark_sent(
        self, item: DeliveryItem, receipt_id: str, now: datetime
    ) -> TransitionResult:
        stmt = (
            update(ScheduledNotification)
            .where(
                and_(
                    ScheduledNotification.id == item.notification_id,
                    ScheduledNotification.status == ScheduledNotificationStatus.PENDING,
                )
            )
            .values(
                status=ScheduledNotificationStatus.SENT,
                delivery_receipt_id=receipt_id,
                processed_at=now,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        updated = self.db.execute(stmt).rowcount
        self.db.commit()
        return TransitionResult.SENT if updated else TransitionResult.SKIPPED

    def apply_ticket(
        self, item: DeliveryItem, ticket: PushTicket, now: datetime
    ) -> TransitionResult:
        if ticket.is_ok and ticket.receipt_id:
            return self.mark_sent(item, ticket.receipt_id, now)
        return self.retry_policy.apply_failure(
            item, ticket.message or "Unknown error", now
        )

    def process(
        self,
        batch: Sequence[DeliveryItem],
        tickets: Sequence[PushTicket],
        now: datetime,
        summary: ProcessingSummary,
    ) -> None:
        """Apply each ticket to its record, then append its audit entry."""
        if len(tickets) != len(batch):
            self.process_batch_failure(
                batch,
                RuntimeError(
                    f"Transport returned {len(tickets)} tickets for {len(batch)} messages"
                ),
                now,
                summary,
            )
            return

        for item, ticket in zip(batch, tickets):
            result: Optional[TransitionResult]
            try:
                result = self.apply_ticket(item, ticket, now)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(
                    f"Failed to update status of notification {item.notification_id}: {str(e)}",
                    exc_info=True,
                )
                result = None
            summary.record(result)

            if not self.audit_logger.record(
                item.message,
                ticket,
                now,
                notification_type=item.notification_type,
                priority=item.priority,
            ):
                summary.audit_failures += 1

    def process_batch_failure(
        self,
        batch: Sequence[DeliveryItem],
        error: BaseException,
        now: datetime,
        summary: ProcessingSummary,
    ) -> None:
        """Treat a whole-batch transport failure as an error ticket per record."""
        summary.batch_failures += 1
        message = str(error) or error.__class__.__name__
        self.process(batch, [PushTicket.error(message)] * len(batch), now, summary)
