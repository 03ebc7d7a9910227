"""Order-related data models."""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class OrderStatus(str, Enum):
    """Backend order lifecycle."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    """Operator-set importance of an order."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class BackendModel(BaseModel):
    """Base for payloads exchanged with the backend (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def coerce_id(value: Any) -> Any:
    """Backend ids arrive as ints or strings; keep them as strings."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def ensure_utc(value: datetime | None) -> datetime | None:
    """Treat naive backend timestamps as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# shown in place of an order without a usable address
MISSING_ADDRESS = "N/A"


class Address(BackendModel):
    """Structured delivery address."""

    street: str | None = None
    landmark: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = Field(default=None, alias="zip_code")
    country: str | None = None

    @field_validator("zip_code", mode="before")
    @classmethod
    def stringify_zip(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    def format(self) -> str:
        """Render the address on one line."""
        parts: list[str] = []
        if self.street:
            parts.append(self.street)
        if self.landmark:
            parts.append(f"Near {self.landmark}")
        for part in (self.city, self.state, self.zip_code, self.country):
            if part:
                parts.append(part)
        return ", ".join(parts) if parts else MISSING_ADDRESS


def format_address(address: "Address | str | None") -> str:
    """Format a structured-or-string address for display and search."""
    if not address:
        return MISSING_ADDRESS
    if isinstance(address, Address):
        return address.format()
    if not address.startswith("{"):
        return address
    try:
        return Address.model_validate(json.loads(address)).format()
    except ValueError:
        return address


class OrderItem(BackendModel):
    """Individual item in an order."""

    name: str = Field(
        default="Item",
        validation_alias=AliasChoices("name", "productName", "product_name"),
    )
    quantity: int = Field(default=1, ge=0)
    unit_price: Decimal | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("unitPrice", "unit_price", "price"),
    )

    @field_validator("name", mode="before")
    @classmethod
    def default_name(cls, v: Any) -> Any:
        return v or "Item"


class Order(BackendModel):
    """Order as read from the backend order store."""

    id: str
    order_number: str
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_email: str | None = None
    delivery_address: Address | str | None = None
    delivery_date: date | None = None
    delivery_time: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    priority: Priority = Priority.MEDIUM

    # Pricing
    total: Decimal | None = None
    payment_status: str | None = None

    # Items
    items: list[OrderItem | str] = Field(default_factory=list)
    items_count: int | None = None

    # Timing
    created_at: datetime
    updated_at: datetime | None = None

    @field_validator("id", "order_number", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        return coerce_id(v)

    @field_validator("priority", mode="before")
    @classmethod
    def default_priority(cls, v: Any) -> Any:
        return v or Priority.MEDIUM

    @field_validator("delivery_date", mode="before")
    @classmethod
    def strip_time_component(cls, v: Any) -> Any:
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v or None

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)

    @property
    def formatted_address(self) -> str:
        """Delivery address on one line."""
        return format_address(self.delivery_address)

    def derived_items_count(self) -> int:
        """Sum of structured item quantities, one per plain item string."""
        return sum(
            item.quantity if isinstance(item, OrderItem) else 1 for item in self.items
        )

    def derived_total(self) -> Decimal | None:
        """Total computed from priced items, or None if any item lacks a price."""
        if not self.items:
            return None
        total = Decimal("0")
        for item in self.items:
            if not isinstance(item, OrderItem) or item.unit_price is None:
                return None
            total += item.unit_price * item.quantity
        return total
