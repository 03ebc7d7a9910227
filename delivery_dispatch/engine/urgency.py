"""Urgency classification and priority scoring.

Both are pure functions of ``(order, assignment, now)``; nothing here reads
the clock or any shared state.
"""

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum

from delivery_dispatch.engine.status_mapping import to_delivery_status
from delivery_dispatch.models.delivery import DeliveryAssignment, DeliveryStatus
from delivery_dispatch.models.order import Order, Priority

TIME_PATTERN = re.compile(r"(\d{1,2}):(\d{2})")

UNASSIGNED_CRITICAL_AGE = timedelta(hours=1)
UNASSIGNED_URGENT_AGE = timedelta(minutes=30)
DEADLINE_URGENT_WINDOW = timedelta(hours=2)
PICKUP_URGENT_AGE = timedelta(minutes=30)


class Urgency(str, Enum):
    """Derived urgency tier."""

    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"


URGENCY_WEIGHTS: dict[Urgency, int] = {
    Urgency.CRITICAL: 3,
    Urgency.URGENT: 2,
    Urgency.NORMAL: 0,
}

PRIORITY_WEIGHTS: dict[Priority, int] = {
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


def parse_slot_start(time_range: str | None) -> time | None:
    """First ``HH:MM`` found in a delivery time-range such as ``"14:00 - 16:00"``."""
    if not time_range:
        return None
    match = TIME_PATTERN.search(time_range)
    if match is None:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return time(hours, minutes)


def delivery_deadline(
    delivery_date: date | None,
    time_range: str | None,
    tz: tzinfo = timezone.utc,
) -> datetime | None:
    """Instant the delivery slot opens, or None without a date and a parsable time."""
    if delivery_date is None:
        return None
    slot_start = parse_slot_start(time_range)
    if slot_start is None:
        return None
    return datetime.combine(delivery_date, slot_start, tzinfo=tz)


def classify_urgency(
    order: Order,
    assignment: DeliveryAssignment | None,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> Urgency:
    """Derive the urgency tier of an order.

    Rules run in a fixed order and the first one that matches wins; a later,
    possibly more severe rule is never consulted once an earlier one has
    returned.
    """
    # Unassigned and waiting for a rider
    if assignment is None and to_delivery_status(order.status) == DeliveryStatus.ASSIGNED:
        age = now - order.created_at
        if age > UNASSIGNED_CRITICAL_AGE:
            return Urgency.CRITICAL
        if age > UNASSIGNED_URGENT_AGE:
            return Urgency.URGENT

    # Delivery slot
    if order.delivery_date and order.delivery_time:
        deadline = delivery_deadline(order.delivery_date, order.delivery_time, tz)
        if deadline is not None:
            if deadline < now:
                return Urgency.CRITICAL
            if deadline - now <= DEADLINE_URGENT_WINDOW:
                return Urgency.URGENT

    # Assigned but not picked up
    if (
        assignment is not None
        and assignment.status == DeliveryStatus.ASSIGNED
        and assignment.assigned_at is not None
    ):
        if now - assignment.assigned_at > PICKUP_URGENT_AGE:
            return Urgency.URGENT

    return Urgency.NORMAL


def priority_score(urgency: Urgency, priority: Priority | None = None) -> int:
    """Combine urgency tier and priority tag into one ordinal score (0-33)."""
    priority_weight = PRIORITY_WEIGHTS.get(priority or Priority.MEDIUM, 2)
    return URGENCY_WEIGHTS[urgency] * 10 + priority_weight


def score_order(
    order: Order,
    assignment: DeliveryAssignment | None,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> tuple[Urgency, int]:
    """Urgency tier and priority score of one order."""
    urgency = classify_urgency(order, assignment, now, tz)
    return urgency, priority_score(urgency, order.priority)
