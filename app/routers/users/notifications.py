from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from app.db.models import (
    DeliveryOutcome,
    NotificationType,
    ScheduledNotificationStatus,
)
from app.schemas.notification_schemas import (
    BatchScheduleNotificationRequest,
    NotificationLogResponse,
    PushTicketResponse,
    ScheduledNotificationResponse,
    ScheduleNotificationRequest,
    TestNotificationRequest,
    UpdateNotificationRequest,
)
from app.services.notifications import (
    DeliveryAnalyticsService,
    NotificationScheduler,
    get_delivery_analytics_service,
    get_notification_scheduler,
)
from app.utils.errors import BusinessLogicError, NotFoundError, PushTransportError
from app.utils.logging import get_logger
from app.utils.responses import ResponseBuilder

from .params import NotificationId, UserId

notifications_router = APIRouter()
logger = get_logger()


def _dump(notification) -> dict:
    return ScheduledNotificationResponse.model_validate(notification).model_dump(
        by_alias=True
    )


@notifications_router.post("", status_code=status.HTTP_201_CREATED)
async def schedule_notification(
    request: Request,
    user_id: UserId,
    body: ScheduleNotificationRequest,
    scheduler: Annotated[NotificationScheduler, Depends(get_notification_scheduler)],
):
    """Schedule a single notification for the user."""
    notification = await scheduler.schedule_notification(
        recipient_id=user_id,
        title=body.title,
        body=body.body,
        payload=body.payload,
        scheduled_for=body.scheduled_for,
        notification_type=body.type,
        priority=body.priority,
    )

    return ResponseBuilder.success(
        request=request,
        data=_dump(notification),
        message="Notification scheduled successfully",
        status_code=status.HTTP_201_CREATED,
    )


@notifications_router.post("/batch", status_code=status.HTTP_201_CREATED)
async def schedule_notifications_batch(
    request: Request,
    user_id: UserId,
    body: BatchScheduleNotificationRequest,
    scheduler: Annotated[NotificationScheduler, Depends(get_notification_scheduler)],
):
    notifications = await scheduler.schedule_notifications_batch(
        user_id,
        [
            {
                "title": item.title,
                "body": item.body,
                "payload": item.payload,
                "scheduled_for": item.scheduled_for,
                "notification_type": item.type,
                "priority": item.priority,
            }
            for item in body.notifications
        ],
    )

    return ResponseBuilder.success(
        request=request,
        data=[_dump(notification) for notification in notifications],
        message=f"{len(notifications)} notifications scheduled successfully",
        status_code=status.HTTP_201_CREATED,
    )


@notifications_router.get("")
async def get_scheduled_notifications(
    request: Request,
    user_id: UserId,
    scheduler: Annotated[NotificationScheduler, Depends(get_notification_scheduler)],
    notification_type: Optional[NotificationType] = Query(
        default=None, alias="type", description="Filter by notification type"
    ),
    notification_status: Optional[ScheduledNotificationStatus] = Query(
        default=None, alias="status", description="Filter by delivery status"
    ),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
):
    notifications, total = await scheduler.get_user_notifications(
        recipient_id=user_id,
        notification_type=notification_type,
        status=notification_status,
        page=page,
        per_page=per_page,
    )

    return ResponseBuilder.paginated(
        request=request,
        data=[_dump(notification) for notification in notifications],
        page=page,
        per_page=per_page,
        total=total,
        message=f"Retrieved {len(notifications)} scheduled notifications",
    )


@notifications_router.get("/logs")
async def get_delivery_logs(
    request: Request,
    user_id: UserId,
    analytics: Annotated[
        DeliveryAnalyticsService, Depends(get_delivery_analytics_service)
    ],
    outcome: Optional[DeliveryOutcome] = Query(default=None),
    notification_type: Optional[NotificationType] = Query(default=None, alias="type"),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=100),
):
    """Delivery history of the user's current push token, newest first."""
    logs, total = await analytics.get_user_delivery_logs(
        user_id,
        outcome=outcome,
        notification_type=notification_type,
        start=start_date,
        end=end_date,
        page=page,
        per_page=per_page,
    )

    return ResponseBuilder.paginated(
        request=request,
        data=[
            NotificationLogResponse.model_validate(log).model_dump(by_alias=True)
            for log in logs
        ],
        page=page,
        per_page=per_page,
        total=total,
        message=f"Retrieved {len(logs)} delivery logs",
    )


@notifications_router.get("/stats")
async def get_notification_stats(
    request: Request,
    user_id: UserId,
    analytics: Annotated[
        DeliveryAnalyticsService, Depends(get_delivery_analytics_service)
    ],
    days: int = Query(default=7, ge=1, le=365),
):
    stats = await analytics.get_user_stats(user_id, days=days)

    return ResponseBuilder.success(
        request=request,
        data=stats.model_dump(by_alias=True),
        message="Notification statistics retrieved",
        meta={"days": days},
    )


@notifications_router.post("/test")
async def send_test_notification(
    request: Request,
    user_id: UserId,
    body: TestNotificationRequest,
    scheduler: Annotated[NotificationScheduler, Depends(get_notification_scheduler)],
):
    """Send a notification immediately, bypassing the schedule."""
    try:
        ticket = await scheduler.send_immediate_notification(
            user_id, body.title, body.body, body.data
        )
    except (BusinessLogicError, NotFoundError, PushTransportError):
        raise
    except Exception as e:
        logger.error(
            f"Failed to send test notification to user {user_id}: {str(e)}",
            exc_info=True,
        )
        raise PushTransportError(
            "Failed to send test notification", error_code="TEST_NOTIFICATION_FAILED"
        )

    return ResponseBuilder.success(
        request=request,
        data=PushTicketResponse(
            outcome=ticket.outcome,
            receipt_id=ticket.receipt_id,
            message=ticket.message,
        ).model_dump(by_alias=True),
        message="Test notification sent",
    )


@notifications_router.put("/{notification_id}")
async def update_scheduled_notification(
    request: Request,
    user_id: UserId,
    notification_id: NotificationId,
    body: UpdateNotificationRequest,
    scheduler: Annotated[NotificationScheduler, Depends(get_notification_scheduler)],
):
    """Edit a notification that has not been processed yet."""
    notification = await scheduler.update_pending_notification(
        notification_id,
        {
            field: getattr(body, field)
            for field in body.model_fields_set
            if getattr(body, field) is not None
        },
        recipient_id=user_id,
    )

    return ResponseBuilder.success(
        request=request,
        data=_dump(notification),
        message="Scheduled notification updated successfully",
    )


@notifications_router.delete("/{notification_id}")
async def cancel_scheduled_notification(
    request: Request,
    user_id: UserId,
    notification_id: NotificationId,
    scheduler: Annotated[NotificationScheduler, Depends(get_notification_scheduler)],
):
    notification = await scheduler.cancel_notification(
        notification_id, recipient_id=user_id
    )

    return ResponseBuilder.success(
        request=request,
        data=_dump(notification),
        message="Scheduled notification cancelled successfully",
    )
