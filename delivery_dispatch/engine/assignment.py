"""Single, bulk and re-assignment of orders to delivery agents."""

from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from delivery_dispatch.clients.delivery_api import DeliveryBackend
from delivery_dispatch.errors import NotFoundError, PermissionDeniedError, ValidationError
from delivery_dispatch.models.delivery import (
    Actor,
    AgentWorkload,
    AssignmentContext,
    AssignmentHistoryEntry,
    BulkAssignFailure,
    BulkAssignResult,
    DeliveryAgent,
    DeliveryAssignment,
    DeliveryStatus,
)
from delivery_dispatch.models.order import Order, OrderStatus, Priority
from delivery_dispatch.state.snapshot import Snapshot, SnapshotStore
from delivery_dispatch.utils.logging import DispatchLogger
from delivery_dispatch.utils.templates import NotificationTemplates

BULK_ASSIGNMENT_REASON = "Bulk assignment"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_assignment_context(order: Order, priority: Priority | None = None) -> AssignmentContext:
    """Order details sent with a single assignment.

    The order's own total and item count are passed through when they are
    positive; otherwise they are derived from the items, and left unset when
    that is not possible either.
    """
    total: Decimal | None = order.total if order.total and order.total > 0 else None
    if total is None:
        derived = order.derived_total()
        total = derived if derived and derived > 0 else None

    items_count = order.items_count if order.items_count and order.items_count > 0 else None
    if items_count is None:
        items_count = order.derived_items_count() or None

    return AssignmentContext(
        customer_name=order.customer_name or "N/A",
        customer_phone=order.customer_phone or "N/A",
        customer_address=order.formatted_address,
        delivery_date=order.delivery_date.isoformat() if order.delivery_date else "",
        delivery_time=order.delivery_time or "",
        priority=priority or order.priority,
        total_amount=total,
        items_count=items_count,
    )


def is_bulk_candidate(order: Order, assignment: DeliveryAssignment | None) -> bool:
    """Ready in backend terms and not yet assigned."""
    return order.status == OrderStatus.READY and assignment is None


def bulk_candidates(snapshot: Snapshot) -> list[Order]:
    return [
        order
        for order in snapshot.orders
        if is_bulk_candidate(order, snapshot.assignments.get(order.id))
    ]


def compute_workload(
    agents: dict[str, DeliveryAgent],
    assignments: dict[str, DeliveryAssignment],
) -> list[AgentWorkload]:
    """Per-agent counts of assignments in each delivery state.

    Recomputed from the given assignments on every call. Rows are ordered by
    total orders, busiest first, then by agent name.
    """
    counts: dict[str, Counter] = {agent_id: Counter() for agent_id in agents}
    for assignment in assignments.values():
        if assignment.agent_id in counts:
            counts[assignment.agent_id][assignment.status] += 1

    rows = []
    for agent_id, agent in agents.items():
        if not agent.is_active:
            continue
        by_status = counts[agent_id]
        rows.append(
            AgentWorkload(
                agent_id=agent_id,
                agent_name=agent.name,
                total_orders=sum(by_status.values()),
                assigned_count=by_status[DeliveryStatus.ASSIGNED],
                picked_up_count=by_status[DeliveryStatus.PICKED_UP],
                in_transit_count=by_status[DeliveryStatus.IN_TRANSIT],
                delivered_count=by_status[DeliveryStatus.DELIVERED],
                delayed_count=by_status[DeliveryStatus.DELAYED],
            )
        )
    rows.sort(key=lambda row: (-row.total_orders, row.agent_name.casefold()))
    return rows


class AssignmentCoordinator:
    """Issues assignment commands and keeps the local audit trail.

    Only dispatchers and administrators may assign. Every accepted
    assignment or reassignment supersedes the order's local assignment and
    prepends one history entry.
    """

    def __init__(
        self,
        backend: DeliveryBackend,
        actor: Actor,
        store: SnapshotStore,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.backend = backend
        self.actor = actor
        self.store = store
        self.clock = clock
        self.logger = DispatchLogger("assignment_coordinator", actor_id=actor.id)

    def _require_dispatcher(self, command: str) -> None:
        if not self.actor.is_dispatcher:
            self.logger.log_rejected(command, "role")
            raise PermissionDeniedError("Only dispatchers can assign deliveries")

    def _require_agent(self, command: str, agent_id: str | None) -> str:
        if not agent_id or not str(agent_id).strip():
            self.logger.log_rejected(command, "no_agent")
            raise ValidationError("Please select a delivery agent")
        return str(agent_id).strip()

    def _agent_name(self, agent_id: str) -> str | None:
        agent = self.store.snapshot.agents.get(agent_id)
        return agent.name if agent else None

    def _record(
        self,
        order_id: str,
        agent_id: str,
        reason: str,
        previous: DeliveryAssignment | None = None,
        assignment_id: str | None = None,
        priority: Priority = Priority.MEDIUM,
    ) -> DeliveryAssignment:
        now = self.clock()
        agent_name = self._agent_name(agent_id)
        if previous is not None:
            assignment = previous.model_copy(
                update={"agent_id": agent_id, "agent_name": agent_name, "assigned_at": now}
            )
        else:
            assignment = DeliveryAssignment(
                id=assignment_id,
                order_id=order_id,
                agent_id=agent_id,
                agent_name=agent_name,
                status=DeliveryStatus.ASSIGNED,
                priority=priority,
                assigned_at=now,
            )
        self.store.put_assignment(assignment)
        self.store.append_history(
            AssignmentHistoryEntry(
                order_id=order_id,
                previous_agent_id=previous.agent_id if previous else None,
                previous_agent_name=previous.agent_name if previous else None,
                new_agent_id=agent_id,
                new_agent_name=agent_name,
                reason=reason,
                created_at=now,
            )
        )
        return assignment

    async def assign(
        self,
        order_id: str,
        agent_id: str | None,
        priority: Priority | None = None,
    ) -> DeliveryAssignment:
        """Assign one unassigned order."""
        self._require_dispatcher("assign")
        agent_id = self._require_agent("assign", agent_id)

        order = self.store.find(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} is not in the current order list")
        if self.store.assignment_for(order_id) is not None:
            self.logger.log_rejected("assign", "already_assigned", order_id=order_id)
            raise ValidationError(
                f"Order #{order.order_number} is already assigned; reassign it instead"
            )

        context = build_assignment_context(order, priority)
        assignment_id = await self.backend.assign(order_id, agent_id, context)
        assignment = self._record(
            order_id,
            agent_id,
            NotificationTemplates.INITIAL_ASSIGNMENT_REASON,
            assignment_id=assignment_id,
            priority=context.priority,
        )
        self.logger.log_command("assign", order_id, agent_id=agent_id)
        return assignment

    def _split_bulk(self, order_ids: list[str]) -> tuple[list[str], list[BulkAssignFailure]]:
        candidates: list[str] = []
        failures: list[BulkAssignFailure] = []
        for order_id in order_ids:
            order = self.store.find(order_id)
            assignment = self.store.assignment_for(order_id)
            if order is None:
                reason = "Order not found in the current order list"
            elif assignment is not None:
                holder = assignment.agent_name or assignment.agent_id
                reason = f"Already assigned to {holder}"
            elif order.status != OrderStatus.READY:
                reason = f"Order is {order.status.value}, not ready for delivery"
            else:
                candidates.append(order_id)
                continue
            failures.append(BulkAssignFailure(order_id=order_id, reason=reason))
        return candidates, failures

    async def bulk_assign(
        self,
        order_ids: list[str],
        agent_id: str | None,
        priority: Priority = Priority.MEDIUM,
    ) -> BulkAssignResult:
        """Assign many orders to one agent with one priority.

        Orders that are not bulk candidates are reported as failed without
        being sent. The three result lists always account for every distinct
        order id requested.
        """
        self._require_dispatcher("bulk_assign")
        order_ids = list(dict.fromkeys(str(order_id) for order_id in order_ids))
        if not order_ids:
            self.logger.log_rejected("bulk_assign", "no_orders")
            raise ValidationError("Please select at least one order")
        agent_id = self._require_agent("bulk_assign", agent_id)
        priority = Priority(priority)

        candidates, failures = self._split_bulk(order_ids)
        if candidates:
            remote = await self.backend.bulk_assign(candidates, agent_id, priority)
        else:
            remote = BulkAssignResult()

        reported = set(remote.assigned) | set(remote.updated) | {f.order_id for f in remote.failed}
        missing = [
            BulkAssignFailure(order_id=order_id, reason="No result returned by the delivery service")
            for order_id in candidates
            if order_id not in reported
        ]
        result = BulkAssignResult(
            assigned=remote.assigned,
            updated=remote.updated,
            failed=failures + remote.failed + missing,
        )

        for order_id in result.succeeded:
            if self.store.find(order_id) is not None:
                self._record(order_id, agent_id, BULK_ASSIGNMENT_REASON, priority=priority)

        self.logger.log_command(
            "bulk_assign",
            agent_id=agent_id,
            summary=NotificationTemplates.BULK_ASSIGN_SUMMARY.format(
                assigned=len(result.assigned),
                updated=len(result.updated),
                failed=len(result.failed),
            ),
        )
        return result

    async def reassign(
        self,
        order_id: str,
        agent_id: str | None,
        reason: str | None = None,
    ) -> DeliveryAssignment:
        """Move an assigned order to a different agent."""
        self._require_dispatcher("reassign")
        agent_id = self._require_agent("reassign", agent_id)

        current = self.store.assignment_for(order_id)
        if current is None:
            self.logger.log_rejected("reassign", "not_assigned", order_id=order_id)
            raise ValidationError(f"Order {order_id} has no active assignment to reassign")
        if current.agent_id == agent_id:
            self.logger.log_rejected("reassign", "same_agent", order_id=order_id)
            raise ValidationError("Order is already assigned to this delivery agent")

        reason = (reason or "").strip() or NotificationTemplates.DEFAULT_REASSIGN_REASON
        await self.backend.reassign(order_id, agent_id, reason)
        assignment = self._record(order_id, agent_id, reason, previous=current)
        self.logger.log_command(
            "reassign",
            order_id,
            previous_agent_id=current.agent_id,
            agent_id=agent_id,
        )
        return assignment

    async def history(self, order_id: str, refresh: bool = True) -> list[AssignmentHistoryEntry]:
        """Assignment history of an order, newest first."""
        if refresh:
            entries = await self.backend.fetch_assignment_history(order_id)
            self.store.set_history(order_id, entries)
        return self.store.history(order_id)
