from datetime import datetime
from typing import Optional

from pydantic import Field

from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class UpdatePushTokenRequest(BaseModel):
    push_token: str = Field(..., min_length=1, max_length=255, description="Expo push token")


class UpdateNotificationPreferencesRequest(BaseModel):
    enabled: Optional[bool] = Field(None, description="Receive push notifications")


class UserNotificationSettingsResponse(BaseModel):
    id: str = Field(..., description="User ID")
    push_token: Optional[str] = None
    notifications_enabled: bool
    last_active: Optional[datetime] = None
