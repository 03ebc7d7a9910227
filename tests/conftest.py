"""Pytest configuration and fixtures."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable

import pytest
import pytest_asyncio

from delivery_dispatch.config import Settings
from delivery_dispatch.errors import RateLimitError, RemoteServiceError
from delivery_dispatch.models.delivery import (
    Actor,
    ActorRole,
    AgentWorkload,
    AssignmentContext,
    AssignmentHistoryEntry,
    BulkAssignResult,
    Coordinates,
    DeliveryAgent,
    DeliveryAssignment,
    DeliveryStatus,
)
from delivery_dispatch.models.order import Order, OrderItem, OrderStatus, Priority
from delivery_dispatch.service import DispatchService

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeDeliveryService:
    """In-memory delivery backend recording every command it receives."""

    def __init__(self) -> None:
        self.orders: dict[str, Order] = {}
        self.assignments: dict[str, DeliveryAssignment] = {}
        self.agents: dict[str, DeliveryAgent] = {}
        self.history: dict[str, list[AssignmentHistoryEntry]] = {}
        self.workload: list[AgentWorkload] = []
        self.calls: list[tuple[Any, ...]] = []
        self.rate_limit_next = 0
        self.retry_after: float | None = None
        self.bulk_result: BulkAssignResult | None = None
        self.reject_next_command = False
        self._next_id = 100

    def command_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def fetch_count(self) -> int:
        return sum(1 for name in self.command_names() if name.startswith("fetch_orders"))

    def add_order(self, order: Order, assignment: DeliveryAssignment | None = None) -> Order:
        self.orders[order.id] = order
        if assignment is not None:
            self.assignments[order.id] = assignment
        return order

    def _maybe_rate_limit(self) -> None:
        if self.rate_limit_next:
            self.rate_limit_next -= 1
            raise RateLimitError(self.retry_after)

    def _maybe_reject(self) -> None:
        if self.reject_next_command:
            self.reject_next_command = False
            raise RemoteServiceError("Delivery service rejected the command", status_code=500)

    async def fetch_orders_by_status(self, status: OrderStatus | str) -> list[Order]:
        self.calls.append(("fetch_orders_by_status", str(OrderStatus(status).value)))
        self._maybe_rate_limit()
        return [o for o in self.orders.values() if o.status == OrderStatus(status)]

    async def fetch_orders_for_agent(self, agent_id: str) -> list[Order]:
        self.calls.append(("fetch_orders_for_agent", agent_id))
        self._maybe_rate_limit()
        return [
            o
            for o in self.orders.values()
            if o.id in self.assignments and self.assignments[o.id].agent_id == agent_id
        ]

    async def fetch_assignment(self, order_id: str) -> DeliveryAssignment | None:
        self.calls.append(("fetch_assignment", order_id))
        return self.assignments.get(order_id)

    async def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        self.calls.append(("update_order_status", order_id, status))
        self._maybe_reject()
        self.orders[order_id] = self.orders[order_id].model_copy(update={"status": status})

    async def update_delivery_status(
        self,
        order_id: str,
        status: DeliveryStatus,
        photo_url: str | None = None,
        coordinates: Coordinates | None = None,
        code: str | None = None,
    ) -> None:
        self.calls.append(("update_delivery_status", order_id, status, photo_url, coordinates, code))
        self._maybe_reject()
        if order_id in self.assignments:
            self.assignments[order_id] = self.assignments[order_id].model_copy(
                update={"status": status}
            )

    async def assign(self, order_id: str, agent_id: str, context: AssignmentContext) -> str:
        self.calls.append(("assign", order_id, agent_id, context))
        self._next_id += 1
        self.assignments[order_id] = DeliveryAssignment(
            id=str(self._next_id),
            order_id=order_id,
            agent_id=agent_id,
            priority=context.priority,
            assigned_at=NOW,
        )
        return str(self._next_id)

    async def bulk_assign(
        self, order_ids: list[str], agent_id: str, priority: Priority
    ) -> BulkAssignResult:
        self.calls.append(("bulk_assign", list(order_ids), agent_id, priority))
        if self.bulk_result is not None:
            return self.bulk_result
        result = BulkAssignResult()
        for order_id in order_ids:
            if order_id in self.assignments:
                result.updated.append(order_id)
            else:
                result.assigned.append(order_id)
            self.assignments[order_id] = DeliveryAssignment(
                order_id=order_id, agent_id=agent_id, priority=priority, assigned_at=NOW
            )
        return result

    async def reassign(self, order_id: str, agent_id: str, reason: str | None = None) -> None:
        self.calls.append(("reassign", order_id, agent_id, reason))
        if order_id in self.assignments:
            self.assignments[order_id] = self.assignments[order_id].model_copy(
                update={"agent_id": agent_id}
            )

    async def fetch_assignment_history(self, order_id: str) -> list[AssignmentHistoryEntry]:
        self.calls.append(("fetch_assignment_history", order_id))
        return list(self.history.get(order_id, []))

    async def fetch_workload(self) -> list[AgentWorkload]:
        self.calls.append(("fetch_workload",))
        return list(self.workload)

    async def fetch_available_agents(self) -> list[DeliveryAgent]:
        self.calls.append(("fetch_available_agents",))
        return list(self.agents.values())


# Settings and actors


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, log_format="text", notification_capacity=50)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dispatcher() -> Actor:
    return Actor(id="1", name="Dana Dispatcher", role=ActorRole.DISPATCHER)


@pytest.fixture
def field_agent() -> Actor:
    return Actor(id="7", name="Ravi Rider", role=ActorRole.FIELD_AGENT)


# Sample data fixtures


@pytest.fixture
def make_order() -> Callable[..., Order]:
    """Factory for orders created a given number of minutes before NOW."""

    def _make(
        order_id: str = "1",
        status: OrderStatus = OrderStatus.READY,
        minutes_ago: float = 5,
        priority: Priority = Priority.MEDIUM,
        delivery_date: date | None = None,
        delivery_time: str | None = None,
        **fields: Any,
    ) -> Order:
        return Order(
            id=order_id,
            order_number=fields.pop("order_number", f"ORD-{order_id}"),
            customer_name=fields.pop("customer_name", f"Customer {order_id}"),
            customer_phone=fields.pop("customer_phone", "+15550100"),
            delivery_address=fields.pop("delivery_address", "12 Baker Street, Springfield"),
            status=status,
            priority=priority,
            delivery_date=delivery_date,
            delivery_time=delivery_time,
            created_at=NOW - timedelta(minutes=minutes_ago),
            **fields,
        )

    return _make


@pytest.fixture
def make_assignment() -> Callable[..., DeliveryAssignment]:
    def _make(
        order_id: str,
        agent_id: str = "7",
        status: DeliveryStatus = DeliveryStatus.ASSIGNED,
        minutes_ago: float = 5,
        agent_name: str | None = "Ravi Rider",
    ) -> DeliveryAssignment:
        return DeliveryAssignment(
            id=f"d-{order_id}",
            order_id=order_id,
            agent_id=agent_id,
            agent_name=agent_name,
            status=status,
            assigned_at=NOW - timedelta(minutes=minutes_ago),
        )

    return _make


@pytest.fixture
def sample_order_item() -> OrderItem:
    return OrderItem(name="Sourdough Loaf", quantity=2, unit_price=Decimal("6.50"))


@pytest.fixture
def agents() -> dict[str, DeliveryAgent]:
    return {
        "7": DeliveryAgent(id="7", name="Ravi Rider", email="ravi@example.com"),
        "8": DeliveryAgent(id="8", name="Asha Courier", email="asha@example.com"),
        "9": DeliveryAgent(id="9", name="Former Rider", is_active=False),
    }


@pytest.fixture
def fake_backend(agents: dict[str, DeliveryAgent]) -> FakeDeliveryService:
    backend = FakeDeliveryService()
    backend.agents = dict(agents)
    return backend


@pytest_asyncio.fixture
async def dispatch_service(
    settings: Settings,
    fake_backend: FakeDeliveryService,
    dispatcher: Actor,
    clock: FakeClock,
) -> AsyncGenerator[DispatchService, None]:
    """Dispatcher-side service over the fake backend."""
    service = DispatchService(
        settings,
        backend=fake_backend,
        actor=dispatcher,
        monotonic=clock,
        now=lambda: NOW,
    )
    yield service
    await service.close()


@pytest_asyncio.fixture
async def agent_service(
    settings: Settings,
    fake_backend: FakeDeliveryService,
    field_agent: Actor,
    clock: FakeClock,
) -> AsyncGenerator[DispatchService, None]:
    """Field-agent-side service over the fake backend."""
    service = DispatchService(
        settings,
        backend=fake_backend,
        actor=field_agent,
        monotonic=clock,
        now=lambda: NOW,
    )
    yield service
    await service.close()
