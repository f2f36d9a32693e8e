from typing import Annotated

from fastapi import Path

# Malformed ids are rejected with 422 before they reach the UUID columns
UUID_PATTERN = (
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

UserId = Annotated[str, Path(pattern=UUID_PATTERN, description="User ID")]
NotificationId = Annotated[
    str, Path(pattern=UUID_PATTERN, description="Scheduled notification ID")
]
