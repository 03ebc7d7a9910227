"""Remote command tracing and monitoring."""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generator

from delivery_dispatch.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TraceEvent:
    """One remote command issued to the delivery service."""

    timestamp: datetime
    command: str
    success: bool
    duration_ms: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CommandTracer:
    """Traces remote commands issued during a client session."""

    def __init__(self, max_events: int = 500):
        self.events: list[TraceEvent] = []
        self.max_events = max_events
        self.start_time = time.time()

    def add_event(
        self,
        command: str,
        success: bool,
        duration_ms: float | None = None,
        **metadata: Any,
    ) -> None:
        """Add a trace event."""
        event = TraceEvent(
            timestamp=datetime.now(timezone.utc),
            command=command,
            success=success,
            duration_ms=duration_ms,
            metadata=metadata,
        )
        self.events.append(event)
        if len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]

        logger.debug(
            "trace_event",
            command=command,
            success=success,
            duration_ms=duration_ms,
            **metadata,
        )

    @contextmanager
    def trace_operation(
        self, command: str, **metadata: Any
    ) -> Generator[dict[str, Any], None, None]:
        """Context manager to trace a command with timing.

        Yields the event metadata so the caller can add fields such as the
        response status code.
        """
        start = time.time()
        success = False
        try:
            yield metadata
            success = True
        except Exception as e:
            metadata["error"] = type(e).__name__
            raise
        finally:
            duration_ms = (time.time() - start) * 1000
            self.add_event(command, success, duration_ms=duration_ms, **metadata)

    def get_trace_summary(self) -> dict[str, Any]:
        """Get a summary of the trace."""
        total_duration = (time.time() - self.start_time) * 1000

        command_stats: dict[str, dict[str, Any]] = {}
        for event in self.events:
            if event.command not in command_stats:
                command_stats[event.command] = {
                    "count": 0,
                    "failures": 0,
                    "total_duration_ms": 0.0,
                    "last_error": None,
                }

            command_stats[event.command]["count"] += 1
            if not event.success:
                command_stats[event.command]["failures"] += 1
                command_stats[event.command]["last_error"] = event.metadata.get("error")
            if event.duration_ms:
                command_stats[event.command]["total_duration_ms"] += event.duration_ms

        for stats in command_stats.values():
            stats["avg_duration_ms"] = stats["total_duration_ms"] / stats["count"]

        return {
            "uptime_ms": total_duration,
            "total_events": len(self.events),
            "command_stats": command_stats,
        }
