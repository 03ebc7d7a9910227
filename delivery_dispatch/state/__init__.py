"""State management modules."""

from delivery_dispatch.state.manager import StateManager
from delivery_dispatch.state.notifications import (
    InMemoryNotificationStore,
    NotificationDeduplicator,
    NotificationStore,
    RedisNotificationStore,
)
from delivery_dispatch.state.snapshot import Snapshot, SnapshotStore
from delivery_dispatch.state.sync import RefreshOutcome, SyncController, SyncPhase

__all__ = [
    "StateManager",
    "Snapshot",
    "SnapshotStore",
    "SyncController",
    "SyncPhase",
    "RefreshOutcome",
    "NotificationDeduplicator",
    "NotificationStore",
    "InMemoryNotificationStore",
    "RedisNotificationStore",
]
