import uuid
from datetime import datetime, date
from enum import Enum
from pydantic import BaseModel, ConfigDict, SerializationInfo, field_serializer
from pydantic.alias_generators import to_camel


class CamelCaseBaseModel(BaseModel):
    """
    Base model with camelCase field aliases and automatic serialization.

    This model automatically maps between camelCase (used by the mobile client)
    and snake_case (used internally in Python):

    - Input: camelCase keys from the client are converted to snake_case for validation.
    - Internal: snake_case fields are used throughout the Python codebase.
    - Output: call `model_dump(by_alias=True)` to serialize fields back to camelCase
    for client responses.
    - Auto-serialization: UUIDs, Enums and datetimes are converted to strings,
    nested models to dictionaries.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @field_serializer("*")
    def serialize_any(self, value, info: SerializationInfo):
        """Global serializer for all fields with comprehensive type handling"""

        if isinstance(value, BaseModel):
            return value.model_dump(by_alias=bool(info.by_alias), exclude_none=True)

        if isinstance(value, uuid.UUID):
            return str(value)

        if isinstance(value, Enum):
            return value.value

        # Handle datetime objects (must come before date check)
        if isinstance(value, datetime):
            return value.isoformat()

        if isinstance(value, date):
            return value.isoformat()

        # Handle lists and tuples recursively
        if isinstance(value, (list, tuple)):
            return [self.serialize_any(item, info) for item in value]

        # Handle dictionaries recursively
        if isinstance(value, dict):
            return {key: self.serialize_any(val, info) for key, val in value.items()}

        if isinstance(value, set):
            return [self.serialize_any(item, info) for item in value]

        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")

        if value is None or isinstance(value, (str, int, float, bool)):
            return value

        # For any other object, try to convert to string as fallback
        try:
            return str(value)
        except Exception:
            return None
