"""Delivery assignment, agent and batch result models."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from delivery_dispatch.models.order import BackendModel, Priority, coerce_id, ensure_utc


class DeliveryStatus(str, Enum):
    """Field-facing delivery lifecycle."""

    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    DELAYED = "delayed"


class ActorRole(str, Enum):
    """Who is issuing commands."""

    FIELD_AGENT = "field_agent"
    DISPATCHER = "dispatcher"
    ADMIN = "admin"


class Actor(BaseModel):
    """The user this engine acts on behalf of."""

    id: str
    name: str
    role: ActorRole

    @property
    def is_dispatcher(self) -> bool:
        """Dispatchers and administrators bypass the field-agent transition table."""
        return self.role in (ActorRole.DISPATCHER, ActorRole.ADMIN)


class Coordinates(BaseModel):
    """Geographic location."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class DeliveryAgent(BackendModel):
    """Delivery agent from the roster service."""

    id: str
    name: str
    email: str | None = None
    contact_number: str | None = None
    is_active: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        return coerce_id(v)


class DeliveryAssignment(BackendModel):
    """Live binding of one order to one delivery agent."""

    id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("deliveryOrderId", "id", "assignment_id"),
    )
    order_id: str
    agent_id: str = Field(
        validation_alias=AliasChoices("deliveryBoyId", "agentId", "agent_id"),
    )
    agent_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("deliveryBoyName", "agentName", "agent_name"),
    )
    status: DeliveryStatus = Field(
        default=DeliveryStatus.ASSIGNED,
        validation_alias=AliasChoices("deliveryStatus", "status"),
    )
    priority: Priority = Priority.MEDIUM
    assigned_at: datetime | None = None

    @field_validator("id", "order_id", "agent_id", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return coerce_id(v)

    @field_validator("status", mode="before")
    @classmethod
    def collapse_cancelled(cls, v: Any) -> Any:
        # the delivery table stores failed deliveries as "cancelled"
        return DeliveryStatus.DELAYED if v == "cancelled" else v

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, v: Any) -> Any:
        return v or Priority.MEDIUM

    @field_validator("assigned_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class AssignmentHistoryEntry(BackendModel):
    """Append-only audit record of one assignment or reassignment."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    order_id: str
    previous_agent_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("oldDeliveryBoyId", "previousAgentId", "previous_agent_id"),
    )
    previous_agent_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "oldDeliveryBoyName", "previousAgentName", "previous_agent_name"
        ),
    )
    new_agent_id: str = Field(
        validation_alias=AliasChoices("newDeliveryBoyId", "newAgentId", "new_agent_id"),
    )
    new_agent_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("newDeliveryBoyName", "newAgentName", "new_agent_name"),
    )
    reason: str = "Assignment"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("id", "order_id", "previous_agent_id", "new_agent_id", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return coerce_id(v)

    @field_validator("previous_agent_name", "new_agent_name", mode="before")
    @classmethod
    def blank_names(cls, v: Any) -> Any:
        return None if v in ("", "N/A") else v

    @field_validator("reason", mode="before")
    @classmethod
    def default_reason(cls, v: Any) -> Any:
        return v or "Assignment"

    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def previous_agent_label(self) -> str:
        return self.previous_agent_name or "N/A"

    @property
    def new_agent_label(self) -> str:
        return self.new_agent_name or "N/A"


class AgentWorkload(BackendModel):
    """Per-agent counts of orders in each delivery state."""

    agent_id: str = Field(
        validation_alias=AliasChoices("deliveryBoyId", "agentId", "agent_id"),
    )
    agent_name: str = Field(
        validation_alias=AliasChoices("deliveryBoyName", "agentName", "agent_name"),
    )
    total_orders: int = 0
    assigned_count: int = 0
    picked_up_count: int = 0
    in_transit_count: int = 0
    delivered_count: int = 0
    delayed_count: int = 0

    @field_validator("agent_id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        return coerce_id(v)


class AssignmentContext(BackendModel):
    """Order details sent with a single assignment.

    `total_amount` and `items_count` are None when the order record has no
    usable value; the backend then computes them from its own order row.
    """

    customer_name: str
    customer_phone: str
    customer_address: str
    delivery_date: str
    delivery_time: str
    priority: Priority = Priority.MEDIUM
    total_amount: Decimal | None = None
    items_count: int | None = None


class BulkAssignFailure(BackendModel):
    """One order the backend could not assign."""

    order_id: str
    reason: str

    @field_validator("order_id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        return coerce_id(v)


class BulkAssignResult(BackendModel):
    """Partial-failure report of a bulk assignment."""

    assigned: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    failed: list[BulkAssignFailure] = Field(default_factory=list)

    @field_validator("assigned", "updated", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return [coerce_id(item) for item in v or []]

    @property
    def total(self) -> int:
        return len(self.assigned) + len(self.updated) + len(self.failed)

    @property
    def succeeded(self) -> list[str]:
        return self.assigned + self.updated
