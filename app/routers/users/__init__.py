from fastapi import APIRouter

from .notifications import notifications_router
from .settings import user_settings_router

users_router = APIRouter()

users_router.include_router(
    user_settings_router, prefix="/{user_id}", tags=["Users - Notification Settings"]
)
users_router.include_router(
    notifications_router,
    prefix="/{user_id}/notifications",
    tags=["Users - Notifications"],
)
