"""
Notification schemas.

A ``NotificationEvent`` is what publishers hand to the bus; the bus turns
it into a stored ``Notification`` by assigning id, timestamp and read
state.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from printease.schemas.orders import CamelModel
from printease.services.notifications.types import NotificationType


class NotificationEvent(CamelModel):
    """Event published on the notification bus."""

    type: NotificationType
    message: str
    user_id: Optional[str] = Field(
        None,
        description="Recipient user id; None broadcasts to everyone",
    )
    order_id: Optional[str] = None
    title: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def resolved_title(self) -> str:
        return self.title or self.type.default_title


class Notification(CamelModel):
    """Stored notification."""

    id: str
    type: NotificationType
    title: str
    message: str
    user_id: Optional[str] = None
    order_id: Optional[str] = None
    timestamp: datetime
    read: bool = False
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_broadcast(self) -> bool:
        return self.user_id is None

    def visible_to(self, user_id: Optional[str]) -> bool:
        """True when the notification belongs in ``user_id``'s feed."""
        return user_id is None or self.is_broadcast or self.user_id == user_id


class UnreadCountResponse(CamelModel):
    unread_count: int


class AnnouncementRequest(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
