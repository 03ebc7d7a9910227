"""Notification models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Kinds of notification the deduplicator emits."""

    DELIVERY_ASSIGNED = "delivery_assigned"
    DELIVERY_STATUS_CHANGED = "delivery_status_changed"


class Notification(BaseModel):
    """A notification shown to the acting user."""

    id: str = Field(default_factory=lambda: f"notif_{uuid4().hex[:12]}")
    type: NotificationType
    title: str
    message: str
    order_id: str
    order_number: str
    previous_status: str | None = None
    status: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    unread: bool = True
    data: dict[str, Any] = Field(default_factory=dict)
