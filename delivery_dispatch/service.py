"""Dispatch service: one acting user's view of the delivery operation."""

import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from delivery_dispatch.clients.delivery_api import DeliveryBackend, DeliveryServiceClient
from delivery_dispatch.config import Settings, get_settings
from delivery_dispatch.engine.assignment import (
    AssignmentCoordinator,
    bulk_candidates,
    compute_workload,
)
from delivery_dispatch.engine.ranking import OrderFilters, RankedOrder, SortMode, rank_orders
from delivery_dispatch.engine.transitions import (
    DeliveryProof,
    StatusTransitionMachine,
    TransitionOutcome,
)
from delivery_dispatch.models.delivery import (
    Actor,
    ActorRole,
    AgentWorkload,
    AssignmentHistoryEntry,
    BulkAssignResult,
    DeliveryAgent,
    DeliveryAssignment,
    DeliveryStatus,
)
from delivery_dispatch.models.notification import Notification
from delivery_dispatch.models.order import Order, OrderStatus, Priority
from delivery_dispatch.state.manager import StateManager
from delivery_dispatch.state.notifications import (
    InMemoryNotificationStore,
    NotificationDeduplicator,
    NotificationStore,
    RedisNotificationStore,
)
from delivery_dispatch.state.snapshot import Snapshot, SnapshotStore
from delivery_dispatch.state.sync import RefreshOutcome, SyncController
from delivery_dispatch.utils.logging import get_logger
from delivery_dispatch.utils.tracing import CommandTracer

logger = get_logger(__name__)

NotificationSubscriber = Callable[[Notification], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DispatchService:
    """Wires the client, snapshot, sync controller and command engines together.

    Refreshes and commands share one snapshot. Commands update it locally
    once the backend accepts them; the next refresh replaces it wholesale.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        backend: DeliveryBackend | None = None,
        actor: Actor | None = None,
        notification_store: NotificationStore | None = None,
        state_manager: StateManager | None = None,
        monotonic: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings or get_settings()
        self.actor = actor or Actor(
            id=self.settings.actor_id,
            name=self.settings.actor_name,
            role=ActorRole(self.settings.actor_role),
        )
        self.tz = ZoneInfo(self.settings.delivery_timezone)
        self._now = now

        self.tracer = CommandTracer()
        self._owns_backend = backend is None
        self.backend = backend or DeliveryServiceClient(self.settings, tracer=self.tracer)

        self._owns_state_manager = False
        self.state_manager = state_manager
        self.notification_store = notification_store or self._build_notification_store()

        self.store = SnapshotStore()
        self.deduplicator = NotificationDeduplicator()
        self.transitions = StatusTransitionMachine(
            self.backend,
            self.actor,
            self.store,
            self.deduplicator.mark_self_initiated,
            self.deduplicator.unmark_self_initiated,
        )
        self.assignments = AssignmentCoordinator(self.backend, self.actor, self.store, clock=now)
        self.sync: SyncController[Snapshot] = SyncController(
            self._fetch_snapshot,
            self._apply_snapshot,
            self.settings,
            clock=monotonic,
        )

        self._subscribers: list[NotificationSubscriber] = []
        self._closed = False

    def _build_notification_store(self) -> NotificationStore:
        if self.settings.notification_backend == "redis":
            if self.state_manager is None:
                self.state_manager = StateManager(self.settings.redis_url)
                self._owns_state_manager = True
            return RedisNotificationStore(
                self.state_manager,
                self.settings.notification_key,
                self.settings.notification_capacity,
            )
        return InMemoryNotificationStore(self.settings.notification_capacity)

    @property
    def snapshot(self) -> Snapshot:
        return self.store.snapshot

    @property
    def closed(self) -> bool:
        return self._closed

    # Refresh

    async def _fetch_snapshot(self) -> Snapshot:
        sequence = self.store.next_sequence()

        if self.actor.is_dispatcher:
            orders: dict[str, Order] = {}
            for status in self.settings.refresh_order_statuses:
                for order in await self.backend.fetch_orders_by_status(status):
                    orders.setdefault(order.id, order)
            agents = {agent.id: agent for agent in await self.backend.fetch_available_agents()}
        else:
            orders = {
                order.id: order
                for order in await self.backend.fetch_orders_for_agent(self.actor.id)
            }
            agents = dict(self.store.snapshot.agents)

        assignments: dict[str, DeliveryAssignment] = {}
        for order_id in orders:
            assignment = await self.backend.fetch_assignment(order_id)
            if assignment is not None:
                assignments[order_id] = assignment

        return Snapshot(
            sequence=sequence,
            fetched_at=self._now(),
            orders=list(orders.values()),
            assignments=assignments,
            agents=agents,
        )

    async def _apply_snapshot(self, snapshot: Snapshot) -> None:
        if self._closed:
            logger.info("snapshot_discarded_after_close", sequence=snapshot.sequence)
            return
        if not self.store.replace(snapshot):
            return

        for notification in self.deduplicator.observe(snapshot):
            try:
                await self.notification_store.add(notification)
            except Exception as e:
                # the snapshot is already applied; live subscribers still get it
                logger.error(
                    "notification_store_failed",
                    notification_id=notification.id,
                    order_id=notification.order_id,
                    error=str(e),
                )
            await self._broadcast(notification)

        logger.debug(
            "snapshot_applied",
            sequence=snapshot.sequence,
            orders=len(snapshot.orders),
            assignments=len(snapshot.assignments),
        )

    async def refresh(self, silent: bool = False) -> RefreshOutcome:
        """Pull a fresh snapshot; see SyncController.refresh."""
        return await self.sync.refresh(silent=silent)

    def start(self) -> None:
        self.sync.start()

    async def close(self) -> None:
        """Stop polling and release connections. Late snapshots are discarded."""
        self._closed = True
        await self.sync.stop()
        if self._owns_backend and isinstance(self.backend, DeliveryServiceClient):
            await self.backend.close()
        if self._owns_state_manager and self.state_manager is not None:
            await self.state_manager.disconnect()
        logger.info("dispatch_service_closed", actor_id=self.actor.id)

    # Ranking

    def ranked_orders(
        self,
        filters: OrderFilters | None = None,
        sort: SortMode = SortMode.PRIORITY,
        now: datetime | None = None,
    ) -> list[RankedOrder]:
        snapshot = self.store.snapshot
        return rank_orders(
            snapshot.orders,
            snapshot.assignments,
            snapshot.agents,
            now or self._now(),
            filters=filters,
            sort=sort,
            tz=self.tz,
        )

    # Transitions

    async def request_transition(
        self,
        order_id: str,
        target: DeliveryStatus | str,
        proof: DeliveryProof | None = None,
    ) -> TransitionOutcome:
        return await self.transitions.request(order_id, target, proof)

    async def attach_proof(self, order_id: str, proof: DeliveryProof) -> TransitionOutcome:
        return await self.transitions.attach_proof(order_id, proof)

    def cancel_pending_proof(self, order_id: str) -> bool:
        """Drop a delivery that is waiting for its photo; the status is unchanged."""
        return self.transitions.cancel_pending(order_id)

    async def set_order_status(self, order_id: str, status: OrderStatus | str) -> None:
        await self.transitions.set_order_status(order_id, status)

    # Assignment

    async def assign(
        self,
        order_id: str,
        agent_id: str | None,
        priority: Priority | None = None,
    ) -> DeliveryAssignment:
        return await self.assignments.assign(order_id, agent_id, priority)

    def bulk_candidates(self) -> list[Order]:
        return bulk_candidates(self.store.snapshot)

    async def bulk_assign(
        self,
        order_ids: list[str],
        agent_id: str | None,
        priority: Priority = Priority.MEDIUM,
    ) -> BulkAssignResult:
        return await self.assignments.bulk_assign(order_ids, agent_id, priority)

    async def reassign(
        self,
        order_id: str,
        agent_id: str | None,
        reason: str | None = None,
    ) -> DeliveryAssignment:
        return await self.assignments.reassign(order_id, agent_id, reason)

    async def assignment_history(
        self, order_id: str, refresh: bool = True
    ) -> list[AssignmentHistoryEntry]:
        return await self.assignments.history(order_id, refresh=refresh)

    def workload(self) -> list[AgentWorkload]:
        snapshot = self.store.snapshot
        return compute_workload(snapshot.agents, snapshot.assignments)

    async def remote_workload(self) -> list[AgentWorkload]:
        return await self.backend.fetch_workload()

    async def available_agents(self) -> list[DeliveryAgent]:
        return await self.backend.fetch_available_agents()

    # Notifications

    def subscribe(self, callback: NotificationSubscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: NotificationSubscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def _broadcast(self, notification: Notification) -> None:
        for callback in list(self._subscribers):
            try:
                await callback(notification)
            except Exception as e:
                logger.error(
                    "notification_subscriber_failed",
                    notification_id=notification.id,
                    error=str(e),
                )

    async def notifications(
        self, limit: int | None = None, unread_only: bool = False
    ) -> list[Notification]:
        return await self.notification_store.recent(limit=limit, unread_only=unread_only)

    async def mark_notifications_read(self, notification_ids: list[str] | None = None) -> int:
        return await self.notification_store.mark_read(notification_ids)

    async def unread_count(self) -> int:
        return await self.notification_store.unread_count()

    # Monitoring

    def metrics(self) -> dict[str, Any]:
        state = self.sync.state
        return {
            "actor": {"id": self.actor.id, "role": self.actor.role.value},
            "sync": {
                "phase": state.phase.value,
                "backoff_seconds": state.backoff_seconds,
                "timer_period_seconds": self.sync.timer_period,
                "last_success_at": state.last_success_at.isoformat()
                if state.last_success_at
                else None,
                "last_error": state.last_error,
                "rate_limit_streak": state.rate_limit_streak,
            },
            "snapshot": {
                "sequence": self.store.snapshot.sequence,
                "orders": len(self.store.snapshot.orders),
                "assignments": len(self.store.snapshot.assignments),
            },
            "pending_proof": sorted(self.transitions.pending_proof),
            "commands": self.tracer.get_trace_summary(),
        }
