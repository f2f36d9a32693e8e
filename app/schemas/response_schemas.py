import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class ResponseStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class PaginationMeta(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool
    next_page: Optional[int] = None
    prev_page: Optional[int] = None


class ApiResponse(BaseModel):
    """Envelope of every API response, success or error.

    Envelope keys stay snake_case (dumped without aliases); payloads placed in
    ``data`` are dumped by alias by the routers.
    """

    success: bool
    status: ResponseStatus
    message: str
    data: Optional[Any] = None
    meta: Optional[Dict[str, Any]] = None
    pagination: Optional[PaginationMeta] = None
    errors: Optional[List[Dict[str, Any]]] = None
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    path: Optional[str] = None
    version: str = "1.0"
