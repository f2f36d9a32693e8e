from datetime import datetime, timedelta
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, Request

from app.services.notifications import (
    DeliveryAnalyticsService,
    get_delivery_analytics_service,
)
from app.utils.datetime_utils import naive_utc_now, to_naive_utc
from app.utils.errors import BusinessLogicError
from app.utils.responses import ResponseBuilder

delivery_stats_router = APIRouter()


@delivery_stats_router.get("/delivery-stats")
async def get_delivery_stats(
    request: Request,
    analytics: Annotated[
        DeliveryAnalyticsService, Depends(get_delivery_analytics_service)
    ],
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
):
    """Outcome counts per day across all recipients (default: last 7 days)."""
    end = to_naive_utc(end_date) if end_date else naive_utc_now()
    start = to_naive_utc(start_date) if start_date else end - timedelta(days=7)
    if start > end:
        raise BusinessLogicError(
            "startDate must not be after endDate", error_code="INVALID_DATE_RANGE"
        )

    stats = await analytics.get_delivery_stats(start, end)

    return ResponseBuilder.success(
        request=request,
        data=[day.model_dump(by_alias=True) for day in stats],
        message="Delivery statistics retrieved",
        meta={"start_date": start.isoformat(), "end_date": end.isoformat()},
    )


@delivery_stats_router.get("/type-stats")
async def get_type_stats(
    request: Request,
    analytics: Annotated[
        DeliveryAnalyticsService, Depends(get_delivery_analytics_service)
    ],
    days: int = Query(default=7, ge=1, le=365),
):
    stats = await analytics.get_type_stats(days=days)

    return ResponseBuilder.success(
        request=request,
        data=[item.model_dump(by_alias=True) for item in stats],
        message="Delivery statistics per notification type retrieved",
        meta={"days": days},
    )


@delivery_stats_router.get("/failed")
async def get_failed_notifications(
    request: Request,
    analytics: Annotated[
        DeliveryAnalyticsService, Depends(get_delivery_analytics_service)
    ],
    limit: int = Query(default=100, ge=1, le=500),
):
    """Most recent delivery failures, newest first."""
    failed = await analytics.get_failed_notifications(limit=limit)

    return ResponseBuilder.success(
        request=request,
        data=[item.model_dump(by_alias=True) for item in failed],
        message=f"Retrieved {len(failed)} failed deliveries",
    )
