from typing import Annotated

from fastapi import APIRouter, Depends, Request

from app.schemas.user_schemas import (
    UpdateNotificationPreferencesRequest,
    UpdatePushTokenRequest,
    UserNotificationSettingsResponse,
)
from app.services.user_service import UserService, get_user_service
from app.utils.responses import ResponseBuilder

from .params import UserId

user_settings_router = APIRouter()


@user_settings_router.put("/push-token")
async def update_push_token(
    request: Request,
    user_id: UserId,
    body: UpdatePushTokenRequest,
    user_service: Annotated[UserService, Depends(get_user_service)],
):
    """Register or replace the Expo push token of a user."""
    user = await user_service.update_push_token(user_id, body.push_token)

    return ResponseBuilder.success(
        request=request,
        data=UserNotificationSettingsResponse.model_validate(user).model_dump(
            by_alias=True
        ),
        message="Push token updated successfully",
    )


@user_settings_router.put("/notification-preferences")
async def update_notification_preferences(
    request: Request,
    user_id: UserId,
    body: UpdateNotificationPreferencesRequest,
    user_service: Annotated[UserService, Depends(get_user_service)],
):
    user = await user_service.update_notification_preferences(
        user_id, enabled=body.enabled
    )

    return ResponseBuilder.success(
        request=request,
        data=UserNotificationSettingsResponse.model_validate(user).model_dump(
            by_alias=True
        ),
        message="Notification preferences updated successfully",
    )
