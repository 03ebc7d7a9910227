"""Order filtering and deterministic ranking."""

from dataclasses import dataclass
from datetime import date, datetime, time, timezone, tzinfo
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel

from delivery_dispatch.engine.status_mapping import effective_delivery_status
from delivery_dispatch.engine.urgency import Urgency, parse_slot_start, score_order
from delivery_dispatch.models.delivery import DeliveryAgent, DeliveryAssignment, DeliveryStatus
from delivery_dispatch.models.order import MISSING_ADDRESS, Order


class AssignmentFilter(str, Enum):
    """Restrict the list by assignment presence."""

    ALL = "all"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"


class SortMode(str, Enum):
    """Available list orderings."""

    PRIORITY = "priority"
    NEWEST = "newest"
    OLDEST = "oldest"
    TOTAL = "total"
    CUSTOMER = "customer"


class OrderFilters(BaseModel):
    """Conjunctive list filters; every field is optional."""

    search: str | None = None
    status: DeliveryStatus | None = None
    assignment: AssignmentFilter = AssignmentFilter.ALL


@dataclass(frozen=True)
class RankedOrder:
    """An order annotated with everything the list needs."""

    order: Order
    assignment: DeliveryAssignment | None
    delivery_status: DeliveryStatus
    urgency: Urgency
    score: int
    agent_name: str | None = None

    @property
    def is_assigned(self) -> bool:
        return self.assignment is not None


def annotate(
    order: Order,
    assignment: DeliveryAssignment | None,
    agents: dict[str, DeliveryAgent],
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> RankedOrder:
    """Attach delivery status, urgency, score and agent name to one order."""
    urgency, score = score_order(order, assignment, now, tz)
    agent_name = None
    if assignment is not None:
        agent = agents.get(assignment.agent_id)
        agent_name = agent.name if agent else assignment.agent_name
    return RankedOrder(
        order=order,
        assignment=assignment,
        delivery_status=effective_delivery_status(order, assignment),
        urgency=urgency,
        score=score,
        agent_name=agent_name,
    )


def matches_search(entry: RankedOrder, term: str) -> bool:
    """Case-insensitive substring match over number, customer, address and agent."""
    needle = term.strip().casefold()
    if not needle:
        return True
    address = entry.order.formatted_address
    haystack = (
        entry.order.order_number,
        entry.order.customer_name,
        None if address == MISSING_ADDRESS else address,
        entry.agent_name,
    )
    return any(field and needle in field.casefold() for field in haystack)


def matches_filters(entry: RankedOrder, filters: OrderFilters) -> bool:
    """True when the entry passes every supplied filter."""
    if filters.status is not None and entry.delivery_status != filters.status:
        return False
    if filters.assignment == AssignmentFilter.ASSIGNED and not entry.is_assigned:
        return False
    if filters.assignment == AssignmentFilter.UNASSIGNED and entry.is_assigned:
        return False
    if filters.search and not matches_search(entry, filters.search):
        return False
    return True


def priority_sort_key(entry: RankedOrder) -> tuple:
    """Multi-key ordering: score desc, slot asc, unassigned first, oldest first."""
    order = entry.order
    slot = parse_slot_start(order.delivery_time)
    return (
        -entry.score,
        order.delivery_date is None,
        order.delivery_date or date.max,
        slot is None,
        slot or time.max,
        entry.is_assigned,
        order.created_at,
    )


def sort_orders(entries: list[RankedOrder], sort: SortMode) -> list[RankedOrder]:
    """Sort annotated orders; non-priority modes are single-key stable sorts."""
    if sort == SortMode.PRIORITY:
        return sorted(entries, key=priority_sort_key)
    if sort == SortMode.NEWEST:
        return sorted(entries, key=lambda e: e.order.created_at, reverse=True)
    if sort == SortMode.OLDEST:
        return sorted(entries, key=lambda e: e.order.created_at)
    if sort == SortMode.TOTAL:
        return sorted(entries, key=lambda e: e.order.total or Decimal("0"), reverse=True)
    if sort == SortMode.CUSTOMER:
        return sorted(entries, key=lambda e: (e.order.customer_name or "").casefold())
    raise ValueError(f"Unknown sort mode: {sort}")


def rank_orders(
    orders: list[Order],
    assignments: dict[str, DeliveryAssignment],
    agents: dict[str, DeliveryAgent],
    now: datetime,
    filters: OrderFilters | None = None,
    sort: SortMode = SortMode.PRIORITY,
    tz: tzinfo = timezone.utc,
) -> list[RankedOrder]:
    """Filter and rank the active orders of a snapshot.

    Delivered orders leave the active set unless the status filter asks for
    them explicitly.
    """
    filters = filters or OrderFilters()
    entries = []
    for order in orders:
        entry = annotate(order, assignments.get(order.id), agents, now, tz)
        if entry.delivery_status == DeliveryStatus.DELIVERED and (
            filters.status != DeliveryStatus.DELIVERED
        ):
            continue
        if matches_filters(entry, filters):
            entries.append(entry)
    return sort_orders(entries, sort)
