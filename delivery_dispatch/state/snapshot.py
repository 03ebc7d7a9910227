"""In-memory snapshot of orders, assignments and assignment history."""

from datetime import datetime

from pydantic import BaseModel, Field

from delivery_dispatch.models.delivery import (
    AssignmentHistoryEntry,
    DeliveryAgent,
    DeliveryAssignment,
    DeliveryStatus,
)
from delivery_dispatch.models.order import Order
from delivery_dispatch.utils.logging import get_logger

logger = get_logger(__name__)


class Snapshot(BaseModel):
    """Result of one refresh.

    Assignments are keyed by order id, so an order never holds more than one
    active assignment.
    """

    sequence: int = 0
    fetched_at: datetime | None = None
    orders: list[Order] = Field(default_factory=list)
    assignments: dict[str, DeliveryAssignment] = Field(default_factory=dict)
    agents: dict[str, DeliveryAgent] = Field(default_factory=dict)

    def find(self, order_id: str) -> Order | None:
        for order in self.orders:
            if order.id == order_id:
                return order
        return None


class SnapshotStore:
    """Owns the current snapshot and the assignment-history cache."""

    def __init__(self) -> None:
        self._snapshot = Snapshot()
        self._history: dict[str, list[AssignmentHistoryEntry]] = {}
        self._issued = 0

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def next_sequence(self) -> int:
        """Sequence number for a refresh about to be issued."""
        self._issued += 1
        return self._issued

    def replace(self, snapshot: Snapshot) -> bool:
        """Apply a refresh wholesale; refuse one issued before the current snapshot."""
        if snapshot.sequence <= self._snapshot.sequence:
            logger.warning(
                "stale_snapshot_discarded",
                sequence=snapshot.sequence,
                current_sequence=self._snapshot.sequence,
            )
            return False
        self._snapshot = snapshot
        return True

    def find(self, order_id: str) -> Order | None:
        return self._snapshot.find(order_id)

    def assignment_for(self, order_id: str) -> DeliveryAssignment | None:
        return self._snapshot.assignments.get(order_id)

    def put_assignment(self, assignment: DeliveryAssignment) -> None:
        """Supersede whatever assignment the order had."""
        self._snapshot.assignments[assignment.order_id] = assignment

    def set_assignment_status(self, order_id: str, status: DeliveryStatus) -> None:
        current = self._snapshot.assignments.get(order_id)
        if current is not None:
            self._snapshot.assignments[order_id] = current.model_copy(update={"status": status})

    def history(self, order_id: str) -> list[AssignmentHistoryEntry]:
        """Cached history for an order, newest first."""
        return list(self._history.get(order_id, []))

    def append_history(self, entry: AssignmentHistoryEntry) -> None:
        self._history.setdefault(entry.order_id, []).insert(0, entry)

    def set_history(self, order_id: str, entries: list[AssignmentHistoryEntry]) -> None:
        self._history[order_id] = sorted(entries, key=lambda e: e.created_at, reverse=True)
