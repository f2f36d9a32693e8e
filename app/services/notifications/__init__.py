from .analytics_service import DeliveryAnalyticsService, get_delivery_analytics_service
from .batcher import DeliveryBatcher
from .cleanup import NotificationCleanupSweeper
from .reminder_service import AttendanceReminderService
from .retry_policy import RetryPolicy
from .scheduler import NotificationScheduler, get_notification_scheduler
from .selector import DueNotificationSelector
from .ticket_processor import NotificationAuditLogger, TicketProcessor
from .types import ProcessingSummary, TransitionResult

__all__ = [
    "DeliveryAnalyticsService",
    "get_delivery_analytics_service",
    "DeliveryBatcher",
    "NotificationCleanupSweeper",
    "AttendanceReminderService",
    "RetryPolicy",
    "NotificationScheduler",
    "get_notification_scheduler",
    "DueNotificationSelector",
    "NotificationAuditLogger",
    "TicketProcessor",
    "ProcessingSummary",
    "TransitionResult",
]
