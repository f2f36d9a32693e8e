import enum
from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import Field

from app.db.models import NotificationPriority, NotificationType
from app.providers.push_transport import PushMessage
from app.schemas.camel_base_model import CamelCaseBaseModel

INVALID_TOKEN_ERROR = "invalid or missing delivery token"


class TransitionResult(enum.Enum):
    SENT = "sent"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    REJECTED = "rejected"
    # Conditional update matched nothing: another sweep already handled it
    SKIPPED = "skipped"


@dataclass
class DeliveryItem:
    """A due record resolved to a token, snapshotted at batching time."""

    notification_id: str
    retry_count: int
    max_retries: int
    notification_type: NotificationType
    priority: NotificationPriority
    message: PushMessage


@dataclass
class PreparedDelivery:
    batches: List[List[DeliveryItem]] = field(default_factory=list)
    rejected_ids: List[str] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return sum(len(batch) for batch in self.batches)


class ProcessingSummary(CamelCaseBaseModel):
    """Counters reported by one delivery sweep."""

    total_due: int = Field(0, description="Records selected as due")
    processed: int = Field(0, description="Records handled without storage error")
    sent: int = 0
    retry_scheduled: int = 0
    failed: int = 0
    rejected: int = 0
    skipped: int = 0
    batches: int = 0
    batch_failures: int = 0
    dispatch_errors: int = 0
    storage_failures: int = 0
    audit_failures: int = 0

    @property
    def handled(self) -> int:
        """Records that reached a recorded outcome (including skips)."""
        return (
            self.sent + self.retry_scheduled + self.failed + self.rejected + self.skipped
        )

    def record(self, result: Optional[TransitionResult]) -> None:
        if result is None:
            self.storage_failures += 1
        elif result == TransitionResult.SENT:
            self.sent += 1
        elif result == TransitionResult.RETRY_SCHEDULED:
            self.retry_scheduled += 1
        elif result == TransitionResult.FAILED:
            self.failed += 1
        elif result == TransitionResult.REJECTED:
            self.rejected += 1
        else:
            self.skipped += 1
