"""Data models for the dispatch engine."""

from delivery_dispatch.models.delivery import (
    Actor,
    ActorRole,
    AgentWorkload,
    AssignmentContext,
    AssignmentHistoryEntry,
    BulkAssignFailure,
    BulkAssignResult,
    Coordinates,
    DeliveryAgent,
    DeliveryAssignment,
    DeliveryStatus,
)
from delivery_dispatch.models.notification import Notification, NotificationType
from delivery_dispatch.models.order import (
    Address,
    Order,
    OrderItem,
    OrderStatus,
    Priority,
    format_address,
)

__all__ = [
    # Order
    "Address",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Priority",
    "format_address",
    # Delivery
    "Actor",
    "ActorRole",
    "AgentWorkload",
    "AssignmentContext",
    "AssignmentHistoryEntry",
    "BulkAssignFailure",
    "BulkAssignResult",
    "Coordinates",
    "DeliveryAgent",
    "DeliveryAssignment",
    "DeliveryStatus",
    # Notification
    "Notification",
    "NotificationType",
]
