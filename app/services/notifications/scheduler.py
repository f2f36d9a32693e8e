import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import Depends
from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import (
    NotificationPriority,
    NotificationType,
    ScheduledNotification,
    ScheduledNotificationStatus,
    User,
)
from app.db.session import get_sync_session
from app.providers.push_transport import (
    PushMessage,
    PushTicket,
    PushTransport,
    get_push_transport,
)
from app.providers.user_directory_provider import UserDirectory
from app.utils.datetime_utils import naive_utc_now, to_naive_utc
from app.utils.errors import (
    BusinessLogicError,
    NotFoundError,
    NotificationProcessingError,
)
from app.utils.logging import get_logger

from .batcher import DeliveryBatcher
from .cleanup import NotificationCleanupSweeper
from .retry_policy import RetryPolicy
from .selector import DueNotificationSelector
from .ticket_processor import NotificationAuditLogger, TicketProcessor
from .types import DeliveryItem, ProcessingSummary

logger = get_logger()

TITLE_MAX_LENGTH = 100
BODY_MAX_LENGTH = 500
UPDATABLE_FIELDS = {"title", "body", "payload", "scheduled_for", "type", "priority"}


class NotificationScheduler:
    """Entry points for scheduling, cancelling and delivering notifications.

    Collaborators (session, push transport, user directory) are injected so
    the delivery sweep can run against any transport, including test doubles.
    """

    def __init__(
        self,
        db_session: Session,
        transport: PushTransport,
        user_directory: Optional[UserDirectory] = None,
        *,
        batch_size: Optional[int] = None,
        max_concurrent_batches: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay_minutes: Optional[int] = None,
    ):
        self.db = db_session
        self.transport = transport
        self.user_directory = user_directory or UserDirectory(db_session)
        if max_concurrent_batches is None:
            max_concurrent_batches = settings.NOTIFICATION_MAX_CONCURRENT_BATCHES
        if max_concurrent_batches < 1:
            raise ValueError(
                f"max_concurrent_batches must be at least 1, got {max_concurrent_batches}"
            )
        self.max_concurrent_batches = max_concurrent_batches
        self.max_retries = (
            max_retries
            if max_retries is not None
            else settings.NOTIFICATION_MAX_RETRIES
        )

        self.selector = DueNotificationSelector(db_session)
        self.batcher = DeliveryBatcher(
            db_session, self.user_directory, transport, batch_size=batch_size
        )
        self.retry_policy = RetryPolicy(
            db_session, retry_delay_minutes=retry_delay_minutes
        )
        self.audit_logger = NotificationAuditLogger(db_session)
        self.ticket_processor = TicketProcessor(
            db_session, self.retry_policy, self.audit_logger
        )
        self.cleanup_sweeper = NotificationCleanupSweeper(db_session)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _validate_content(self, title: str, body: str) -> None:
        if not title or len(title) > TITLE_MAX_LENGTH:
            raise BusinessLogicError(
                f"Title must be between 1 and {TITLE_MAX_LENGTH} characters",
                error_code="INVALID_NOTIFICATION_TITLE",
            )
        if not body or len(body) > BODY_MAX_LENGTH:
            raise BusinessLogicError(
                f"Body must be between 1 and {BODY_MAX_LENGTH} characters",
                error_code="INVALID_NOTIFICATION_BODY",
            )

    def _build_notification(
        self,
        recipient_id: str,
        title: str,
        body: str,
        payload: Optional[Dict[str, Any]],
        scheduled_for: datetime,
        notification_type: NotificationType,
        priority: NotificationPriority,
    ) -> ScheduledNotification:
        self._validate_content(title, body)
        return ScheduledNotification(
            recipient_id=recipient_id,
            title=title,
            body=body,
            payload=dict(payload or {}),
            scheduled_for=to_naive_utc(scheduled_for),
            type=notification_type,
            priority=priority,
            status=ScheduledNotificationStatus.PENDING,
            retry_count=0,
            max_retries=self.max_retries,
        )

    def _ensure_user_exists(self, user_id: str) -> None:
        if self.db.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found", error_code="USER_NOT_FOUND")

    async def schedule_notification(
        self,
        recipient_id: str,
        title: str,
        body: str,
        payload: Optional[Dict[str, Any]] = None,
        scheduled_for: Optional[datetime] = None,
        notification_type: NotificationType = NotificationType.REMINDER,
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> ScheduledNotification:
        """Create a pending notification for ``recipient_id``."""
        self._ensure_user_exists(recipient_id)

        notification = self._build_notification(
            recipient_id,
            title,
            body,
            payload,
            scheduled_for or naive_utc_now(),
            notification_type,
            priority,
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)

        logger.info(
            f"Notification {notification.id} scheduled for user {recipient_id} "
            f"at {notification.scheduled_for.isoformat()}"
        )
        return notification

    async def schedule_notifications_batch(
        self, recipient_id: str, notifications: Sequence[Dict[str, Any]]
    ) -> List[ScheduledNotification]:
        """Schedule several notifications for one user in a single commit."""
        if not notifications:
            raise BusinessLogicError(
                "At least one notification is required",
                error_code="EMPTY_NOTIFICATION_BATCH",
            )
        self._ensure_user_exists(recipient_id)

        created = [
            self._build_notification(
                recipient_id,
                item["title"],
                item["body"],
                item.get("payload"),
                item.get("scheduled_for") or naive_utc_now(),
                item.get("notification_type", NotificationType.REMINDER),
                item.get("priority", NotificationPriority.NORMAL),
            )
            for item in notifications
        ]
        self.db.add_all(created)
        self.db.commit()

        logger.info(f"Scheduled {len(created)} notifications for user {recipient_id}")
        return created

    def _get_owned(
        self, notification_id: str, recipient_id: Optional[str]
    ) -> ScheduledNotification:
        notification = self.db.get(
            ScheduledNotification, notification_id, populate_existing=True
        )
        if notification is None or (
            recipient_id is not None and notification.recipient_id != recipient_id
        ):
            raise NotFoundError(
                "Scheduled notification not found",
                error_code="NOTIFICATION_NOT_FOUND",
            )
        return notification

    def _pending_guard(self, notification_id: str, recipient_id: Optional[str]):
        conditions = [
            ScheduledNotification.id == notification_id,
            ScheduledNotification.status == ScheduledNotificationStatus.PENDING,
        ]
        if recipient_id is not None:
            conditions.append(ScheduledNotification.recipient_id == recipient_id)
        return and_(*conditions)

    async def cancel_notification(
        self, notification_id: str, recipient_id: Optional[str] = None
    ) -> ScheduledNotification:
        """Move a pending notification to ``cancelled``.

        Raises ``NotFoundError`` for unknown ids and ``BusinessLogicError``
        when the notification already reached a terminal state.
        """
        now = naive_utc_now()
        updated = self.db.execute(
            update(ScheduledNotification)
            .where(self._pending_guard(notification_id, recipient_id))
            .values(
                status=ScheduledNotificationStatus.CANCELLED,
                processed_at=now,
                next_retry_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        self.db.commit()

        notification = self._get_owned(notification_id, recipient_id)
        if not updated:
            raise BusinessLogicError(
                f"Notification is already {notification.status.value}",
                error_code="NOTIFICATION_ALREADY_PROCESSED",
            )

        logger.info(f"Notification {notification_id} cancelled")
        return notification

    async def update_pending_notification(
        self,
        notification_id: str,
        changes: Dict[str, Any],
        recipient_id: Optional[str] = None,
    ) -> ScheduledNotification:
        """Edit content or timing of a notification that is still pending."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise BusinessLogicError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}",
                error_code="INVALID_NOTIFICATION_UPDATE",
            )
        if not changes:
            return self._get_owned(notification_id, recipient_id)

        current = self._get_owned(notification_id, recipient_id)
        self._validate_content(
            changes.get("title", current.title), changes.get("body", current.body)
        )

        values = dict(changes)
        if values.get("scheduled_for") is not None:
            values["scheduled_for"] = to_naive_utc(values["scheduled_for"])
        values["updated_at"] = naive_utc_now()

        updated = self.db.execute(
            update(ScheduledNotification)
            .where(self._pending_guard(notification_id, recipient_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        self.db.commit()

        notification = self._get_owned(notification_id, recipient_id)
        if not updated:
            raise BusinessLogicError(
                f"Notification is already {notification.status.value}",
                error_code="NOTIFICATION_ALREADY_PROCESSED",
            )
        return notification

    async def get_user_notifications(
        self,
        recipient_id: str,
        notification_type: Optional[NotificationType] = None,
        status: Optional[ScheduledNotificationStatus] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[ScheduledNotification], int]:
        conditions = [ScheduledNotification.recipient_id == recipient_id]
        if notification_type is not None:
            conditions.append(ScheduledNotification.type == notification_type)
        if status is not None:
            conditions.append(ScheduledNotification.status == status)

        total = self.db.scalar(
            select(func.count(ScheduledNotification.id)).where(and_(*conditions))
        )
        notifications = self.db.scalars(
            select(ScheduledNotification)
            .where(and_(*conditions))
            .order_by(ScheduledNotification.scheduled_for.asc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).all()
        return list(notifications), total or 0

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _dispatch_batch(
        self,
        batch: List[DeliveryItem],
        now: datetime,
        summary: ProcessingSummary,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            try:
                tickets = await self.transport.send([item.message for item in batch])
            except Exception as e:
                logger.error(
                    f"Push batch of {len(batch)} messages failed: {str(e)}",
                    exc_info=True,
                )
                self.ticket_processor.process_batch_failure(batch, e, now, summary)
                return

            self.ticket_processor.process(batch, tickets, now, summary)

    async def process_due_notifications(
        self, now: Optional[datetime] = None
    ) -> ProcessingSummary:
        """Deliver every currently due notification.

        Safe to call redundantly: every status change is a conditional update
        on a still-pending record. Raises ``NotificationProcessingError`` when
        some status updates could not be stored; those records stay pending
        and are picked up again by the next sweep.
        """
        now = to_naive_utc(now) if now else naive_utc_now()

        records = self.selector.get_all_due(now)
        summary = ProcessingSummary(total_due=len(records))

        if not records:
            logger.info("No notifications to send")
            return summary

        logger.info(f"Processing {len(records)} due notifications")

        prepared = self.batcher.prepare(records, now, summary)
        summary.batches = len(prepared.batches)

        semaphore = asyncio.Semaphore(self.max_concurrent_batches)
        results = await asyncio.gather(
            *(
                self._dispatch_batch(batch, now, summary, semaphore)
                for batch in prepared.batches
            ),
            return_exceptions=True,
        )
        for batch, result in zip(prepared.batches, results):
            if isinstance(result, Exception):
                summary.dispatch_errors += 1
                logger.opt(exception=result).error(
                    f"Unexpected error while dispatching a batch of {len(batch)} "
                    f"notifications: {str(result)}"
                )
            elif isinstance(result, BaseException):
                raise result

        # Records of a batch that broke off before reaching an outcome stay pending
        summary.processed = summary.handled

        logger.info(
            f"Processed {summary.processed}/{summary.total_due} notifications: "
            f"{summary.sent} sent, {summary.retry_scheduled} retrying, "
            f"{summary.failed} failed, {summary.rejected} rejected, "
            f"{summary.skipped} skipped"
        )

        if summary.processed < summary.total_due:
            raise NotificationProcessingError(summary)
        return summary

    async def send_immediate_notification(
        self,
        user_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> PushTicket:
        """Send one high-priority message right away, outside the schedule."""
        recipient = self.user_directory.get(user_id)
        if recipient is None:
            raise NotFoundError(f"User {user_id} not found", error_code="USER_NOT_FOUND")

        token = recipient.delivery_token
        if not self.transport.is_valid_token(token):
            raise BusinessLogicError(
                "Invalid or missing push token", error_code="INVALID_PUSH_TOKEN"
            )

        message = PushMessage(
            to=token,
            title=title,
            body=body,
            data=dict(data or {}),
            priority="high",
        )

        try:
            tickets = await self.transport.send([message])
        except Exception as e:
            self.audit_logger.record(
                message,
                PushTicket.error(str(e) or e.__class__.__name__),
                naive_utc_now(),
                notification_type=NotificationType.SYSTEM,
                priority=NotificationPriority.HIGH,
            )
            raise

        ticket = tickets[0]
        self.audit_logger.record(
            message,
            ticket,
            naive_utc_now(),
            notification_type=NotificationType.SYSTEM,
            priority=NotificationPriority.HIGH,
        )
        logger.info(
            f"Immediate notification to user {user_id}: {ticket.outcome.value}"
        )
        return ticket

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def cleanup_old_notifications(
        self, retention_days: Optional[int] = None, now: Optional[datetime] = None
    ) -> int:
        return self.cleanup_sweeper.cleanup_old_notifications(
            (
                retention_days
                if retention_days is not None
                else settings.NOTIFICATION_RETENTION_DAYS
            ),
            now,
        )

    async def cleanup_old_delivery_logs(
        self, retention_days: Optional[int] = None, now: Optional[datetime] = None
    ) -> int:
        return self.cleanup_sweeper.cleanup_old_delivery_logs(
            (
                retention_days
                if retention_days is not None
                else settings.DELIVERY_LOG_RETENTION_DAYS
            ),
            now,
        )


def get_notification_scheduler(
    db: Session = Depends(get_sync_session),
    transport: PushTransport = Depends(get_push_transport),
) -> NotificationScheduler:
    return NotificationScheduler(db, transport)
