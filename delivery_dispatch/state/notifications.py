"""Notification deduplication and bounded notification stores."""

from abc import ABC, abstractmethod
from collections import Counter, deque

from delivery_dispatch.engine.status_mapping import effective_delivery_status
from delivery_dispatch.models.delivery import DeliveryStatus
from delivery_dispatch.models.notification import Notification, NotificationType
from delivery_dispatch.models.order import Order
from delivery_dispatch.state.manager import StateManager
from delivery_dispatch.state.snapshot import Snapshot
from delivery_dispatch.utils.logging import get_logger
from delivery_dispatch.utils.templates import NotificationTemplates

logger = get_logger(__name__)


class NotificationDeduplicator:
    """Emits notifications for new orders and for status changes made elsewhere.

    Status changes the local user just submitted are registered with
    `mark_self_initiated` before the command goes out, and are skipped on the
    next observed snapshot. A command the backend rejects withdraws its
    marker with `unmark_self_initiated`; markers are counted so that only
    that command's marker is withdrawn.
    """

    def __init__(self) -> None:
        self._known_ids: set[str] = set()
        self._last_status: dict[str, DeliveryStatus] = {}
        self._self_initiated: Counter[str] = Counter()

    def mark_self_initiated(self, order_id: str) -> None:
        self._self_initiated[order_id] += 1

    def unmark_self_initiated(self, order_id: str) -> None:
        if self._self_initiated[order_id] <= 1:
            self._self_initiated.pop(order_id, None)
        else:
            self._self_initiated[order_id] -= 1

    @property
    def self_initiated(self) -> frozenset[str]:
        return frozenset(self._self_initiated)

    @property
    def known_ids(self) -> frozenset[str]:
        return frozenset(self._known_ids)

    def observe(self, snapshot: Snapshot) -> list[Notification]:
        """Compare a freshly applied snapshot with the previous one."""
        had_previous = bool(self._known_ids)
        current_status: dict[str, DeliveryStatus] = {}
        notifications: list[Notification] = []

        for order in snapshot.orders:
            status = effective_delivery_status(order, snapshot.assignments.get(order.id))
            current_status[order.id] = status

            if order.id not in self._known_ids:
                if had_previous:
                    notifications.append(self._assigned(order))
            elif (
                self._last_status.get(order.id) != status
                and order.id not in self._self_initiated
            ):
                notifications.append(
                    self._status_changed(order, self._last_status.get(order.id), status)
                )

        if self._self_initiated:
            logger.debug("self_initiated_markers_drained", order_ids=sorted(self._self_initiated))
        self._self_initiated.clear()
        self._known_ids = set(current_status)
        self._last_status = current_status
        return notifications

    def _assigned(self, order: Order) -> Notification:
        return Notification(
            type=NotificationType.DELIVERY_ASSIGNED,
            title=NotificationTemplates.DELIVERY_ASSIGNED_TITLE,
            message=NotificationTemplates.DELIVERY_ASSIGNED_MESSAGE.format(
                order_number=order.order_number
            ),
            order_id=order.id,
            order_number=order.order_number,
        )

    def _status_changed(
        self,
        order: Order,
        previous: DeliveryStatus | None,
        status: DeliveryStatus,
    ) -> Notification:
        previous_value = previous.value if previous else None
        return Notification(
            type=NotificationType.DELIVERY_STATUS_CHANGED,
            title=NotificationTemplates.DELIVERY_STATUS_CHANGED_TITLE,
            message=NotificationTemplates.DELIVERY_STATUS_CHANGED_MESSAGE.format(
                order_number=order.order_number,
                previous_status=previous_value or "unknown",
                status=status.value,
            ),
            order_id=order.id,
            order_number=order.order_number,
            previous_status=previous_value,
            status=status.value,
        )


class NotificationStore(ABC):
    """Bounded, newest-first notification log."""

    capacity: int

    @abstractmethod
    async def add(self, notification: Notification) -> None:
        """Record a notification, evicting the oldest past capacity."""

    @abstractmethod
    async def recent(self, limit: int | None = None, unread_only: bool = False) -> list[Notification]:
        """Notifications, newest first."""

    @abstractmethod
    async def mark_read(self, notification_ids: list[str] | None = None) -> int:
        """Mark the given notifications (or all) read; returns how many changed."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every notification."""

    async def unread_count(self) -> int:
        return len(await self.recent(unread_only=True))


def _select(
    notifications: list[Notification],
    limit: int | None,
    unread_only: bool,
) -> list[Notification]:
    if unread_only:
        notifications = [n for n in notifications if n.unread]
    if limit is not None:
        notifications = notifications[:limit]
    return notifications


def _mark(notifications: list[Notification], notification_ids: list[str] | None) -> int:
    wanted = set(notification_ids) if notification_ids is not None else None
    changed = 0
    for notification in notifications:
        if notification.unread and (wanted is None or notification.id in wanted):
            notification.unread = False
            changed += 1
    return changed


class InMemoryNotificationStore(NotificationStore):
    """Ring buffer held in process memory."""

    def __init__(self, capacity: int = 50):
        self.capacity = capacity
        self._entries: deque[Notification] = deque(maxlen=capacity)

    async def add(self, notification: Notification) -> None:
        self._entries.appendleft(notification)

    async def recent(self, limit: int | None = None, unread_only: bool = False) -> list[Notification]:
        return _select(list(self._entries), limit, unread_only)

    async def mark_read(self, notification_ids: list[str] | None = None) -> int:
        return _mark(list(self._entries), notification_ids)

    async def clear(self) -> None:
        self._entries.clear()


class RedisNotificationStore(NotificationStore):
    """Ring buffer kept in a capped Redis list."""

    def __init__(self, state: StateManager, key: str, capacity: int = 50):
        self.state = state
        self.key = key
        self.capacity = capacity

    async def add(self, notification: Notification) -> None:
        await self.state.push_bounded(
            self.key,
            notification.model_dump(mode="json"),
            self.capacity,
        )

    async def _load(self) -> list[Notification]:
        raw = await self.state.lrange(self.key, 0, self.capacity - 1)
        return [Notification.model_validate(item) for item in raw if isinstance(item, dict)]

    async def recent(self, limit: int | None = None, unread_only: bool = False) -> list[Notification]:
        return _select(await self._load(), limit, unread_only)

    async def mark_read(self, notification_ids: list[str] | None = None) -> int:
        notifications = await self._load()
        changed = _mark(notifications, notification_ids)
        if changed:
            await self.state.replace_list(
                self.key,
                [n.model_dump(mode="json") for n in notifications],
            )
        return changed

    async def clear(self) -> None:
        await self.state.delete(self.key)
