from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.db.models import User
from app.db.session import get_sync_session
from app.utils.datetime_utils import naive_utc_now
from app.utils.errors import BusinessLogicError, NotFoundError
from app.utils.logging import get_logger

logger = get_logger()


class UserService:
    """Push registration and notification preferences of app users."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _get_user(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", error_code="USER_NOT_FOUND")
        return user

    async def update_push_token(self, user_id: str, push_token: str) -> User:
        if not push_token or not push_token.strip():
            raise BusinessLogicError(
                "Push token is required", error_code="PUSH_TOKEN_REQUIRED"
            )

        user = self._get_user(user_id)
        user.push_token = push_token.strip()
        user.last_active = naive_utc_now()
        self.db.commit()
        self.db.refresh(user)

        logger.info(f"Push token updated for user {user_id}")
        return user

    async def update_notification_preferences(
        self, user_id: str, enabled: Optional[bool] = None
    ) -> User:
        user = self._get_user(user_id)
        if enabled is not None:
            user.notifications_enabled = enabled
        user.last_active = naive_utc_now()
        self.db.commit()
        self.db.refresh(user)

        logger.info(
            f"Notification preferences updated for user {user_id}: "
            f"enabled={user.notifications_enabled}"
        )
        return user


def get_user_service(db: Session = Depends(get_sync_session)) -> UserService:
    return UserService(db)
