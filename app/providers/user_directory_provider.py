from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import User


@dataclass(frozen=True)
class RecipientInfo:
    user_id: str
    push_token: Optional[str]
    notifications_enabled: bool

    @property
    def delivery_token(self) -> Optional[str]:
        """Token to deliver to, or None when the user opted out or has none."""
        if not self.notifications_enabled:
            return None
        return self.push_token or None


class UserDirectory:
    """Resolves notification recipients to push tokens."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def resolve(self, user_ids: Iterable[str]) -> Dict[str, RecipientInfo]:
        ids = {str(user_id) for user_id in user_ids}
        if not ids:
            return {}

        rows = self.db.execute(
            select(User.id, User.push_token, User.notifications_enabled).where(
                User.id.in_(ids)
            )
        ).all()

        return {
            row.id: RecipientInfo(
                user_id=row.id,
                push_token=row.push_token,
                notifications_enabled=row.notifications_enabled,
            )
            for row in rows
        }

    def get(self, user_id: str) -> Optional[RecipientInfo]:
        return self.resolve([user_id]).get(str(user_id))
