import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.config.settings import settings
from app.db.models import DeliveryOutcome
from app.utils.errors import PushTransportError
from app.utils.logging import get_logger

logger = get_logger()

EXPO_MAX_BATCH_SIZE = 100
_EXPO_TOKEN_PATTERN = re.compile(r"^Expo(nent)?PushToken\[.+\]$")


@dataclass
class PushMessage:
    """A single push message as handed to a transport."""

    to: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    sound: Optional[str] = "default"
    priority: str = "normal"
    badge: Optional[int] = 1
    category_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "data": self.data,
            "priority": self.priority,
        }
        if self.sound:
            payload["sound"] = self.sound
        if self.badge is not None:
            payload["badge"] = self.badge
        if self.category_id:
            payload["categoryId"] = self.category_id
        return payload


@dataclass(frozen=True)
class PushTicket:
    """Per-message gateway result."""

    outcome: DeliveryOutcome
    receipt_id: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, receipt_id: str) -> "PushTicket":
        return cls(outcome=DeliveryOutcome.OK, receipt_id=receipt_id)

    @classmethod
    def error(
        cls, message: str, details: Optional[Dict[str, Any]] = None
    ) -> "PushTicket":
        return cls(outcome=DeliveryOutcome.ERROR, message=message, details=details)

    @property
    def is_ok(self) -> bool:
        return self.outcome == DeliveryOutcome.OK


class PushTransport(ABC):
    """Sends a batch of messages to a push gateway.

    ``send`` returns one ticket per message in input order. Raising means the
    whole batch failed.
    """

    max_batch_size: int = EXPO_MAX_BATCH_SIZE

    def is_valid_token(self, token: Optional[str]) -> bool:
        return bool(token)

    @abstractmethod
    async def send(self, messages: Sequence[PushMessage]) -> List[PushTicket]:
        raise NotImplementedError


class ExpoPushTransport(PushTransport):
    """Expo push service adapter over ``httpx``."""

    max_batch_size = EXPO_MAX_BATCH_SIZE

    def __init__(
        self,
        push_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.push_url = push_url or settings.EXPO_PUSH_URL
        self.access_token = (
            access_token if access_token is not None else settings.EXPO_ACCESS_TOKEN
        )
        self.timeout = timeout if timeout is not None else settings.EXPO_TIMEOUT_SECONDS
        self._client = client

    def is_valid_token(self, token: Optional[str]) -> bool:
        return bool(token) and bool(_EXPO_TOKEN_PATTERN.match(token))

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _post(self, payload: List[Dict[str, Any]]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self.push_url,
                headers=self._headers(),
                json=payload,
                timeout=self.timeout,
            )

        async with httpx.AsyncClient() as client:
            return await client.post(
                self.push_url,
                headers=self._headers(),
                json=payload,
                timeout=self.timeout,
            )

    async def send(self, messages: Sequence[PushMessage]) -> List[PushTicket]:
        if not messages:
            return []
        if len(messages) > self.max_batch_size:
            raise ValueError(
                f"Batch of {len(messages)} exceeds Expo limit of {self.max_batch_size}"
            )

        response = await self._post([message.to_payload() for message in messages])

        if response.status_code != 200:
            raise PushTransportError(
                f"Expo push request failed: {response.status_code} - {response.text}",
                error_code="EXPO_HTTP_ERROR",
            )

        try:
            body = response.json()
        except ValueError as e:
            raise PushTransportError(
                f"Expo push response is not JSON: {str(e)}",
                error_code="EXPO_INVALID_RESPONSE",
            )

        if not isinstance(body, dict):
            raise PushTransportError(
                "Expo push response is not a JSON object",
                error_code="EXPO_INVALID_RESPONSE",
            )

        if body.get("errors"):
            raise PushTransportError(
                f"Expo push request rejected: {body['errors']}",
                error_code="EXPO_REQUEST_ERROR",
            )

        data = body.get("data")
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list) or len(data) != len(messages):
            raise PushTransportError(
                f"Expo returned {len(data) if isinstance(data, list) else 0} tickets "
                f"for {len(messages)} messages",
                error_code="EXPO_TICKET_MISMATCH",
            )

        tickets = [self._parse_ticket(item) for item in data]
        logger.debug(
            f"Expo accepted {sum(t.is_ok for t in tickets)}/{len(tickets)} messages"
        )
        return tickets

    @staticmethod
    def _parse_ticket(item: Dict[str, Any]) -> PushTicket:
        if item.get("status") == "ok":
            if not item.get("id"):
                return PushTicket.error("Ticket accepted without a receipt id")
            return PushTicket.ok(item["id"])
        return PushTicket.error(
            item.get("message") or "Unknown error", details=item.get("details")
        )


def get_push_transport() -> PushTransport:
    """Transport used by the Celery tasks and the HTTP API."""
    return ExpoPushTransport()
