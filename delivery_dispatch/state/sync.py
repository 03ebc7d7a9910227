"""Single-flight, throttled, backed-off refresh loop."""

import asyncio
import time
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

from delivery_dispatch.config import Settings, get_settings
from delivery_dispatch.errors import DispatchError, RateLimitError
from delivery_dispatch.utils.logging import DispatchLogger

T = TypeVar("T")


class SyncPhase(str, Enum):
    """Whether a refresh is in flight."""

    IDLE = "idle"
    FETCHING = "fetching"


class RefreshOutcome(str, Enum):
    """What a refresh call did."""

    APPLIED = "applied"
    SKIPPED_BUSY = "skipped_busy"
    SKIPPED_THROTTLED = "skipped_throttled"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass
class SyncState:
    """Busy flag, backoff interval and throttle bookkeeping in one place."""

    backoff_seconds: float
    phase: SyncPhase = SyncPhase.IDLE
    last_fetch_started: float | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    rate_limit_streak: int = 0


class SyncController(Generic[T]):
    """Drives refreshes for one consumer.

    `fetch` pulls a snapshot from the backend and `apply` installs it. A
    refresh is dropped without error while another one is in flight or when
    the previous fetch started less than the minimum interval ago.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        apply: Callable[[T], Awaitable[None]],
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self._fetch = fetch
        self._apply = apply
        self._clock = clock
        self.state = SyncState(backoff_seconds=self.settings.base_poll_interval_seconds)
        self.logger = DispatchLogger("sync_controller")
        self._task: asyncio.Task | None = None
        self._refresh_task: asyncio.Future | None = None

    @property
    def is_busy(self) -> bool:
        return self.state.phase == SyncPhase.FETCHING

    @property
    def timer_period(self) -> float:
        """Background period: the backoff interval, never under the timer floor."""
        return max(self.state.backoff_seconds, self.settings.min_timer_period_seconds)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _throttled(self, now: float) -> bool:
        last = self.state.last_fetch_started
        return last is not None and now - last < self.settings.min_fetch_interval_seconds

    def _record_success(self) -> None:
        self.state.backoff_seconds = self.settings.base_poll_interval_seconds
        self.state.rate_limit_streak = 0
        self.state.last_error = None
        self.state.last_success_at = datetime.now(timezone.utc)

    def _record_rate_limit(self) -> None:
        self.state.backoff_seconds = min(
            self.state.backoff_seconds * 2,
            self.settings.max_poll_interval_seconds,
        )
        self.state.rate_limit_streak += 1
        self.state.last_error = "rate_limited"

    async def refresh(self, silent: bool = False) -> RefreshOutcome:
        """Run one refresh cycle.

        Foreground calls (`silent=False`) raise the DispatchError that ended
        the cycle. Silent calls log it and report the outcome instead; the
        backoff state is updated either way.
        """
        if self.is_busy:
            self.logger.log_refresh(RefreshOutcome.SKIPPED_BUSY.value, silent)
            return RefreshOutcome.SKIPPED_BUSY

        now = self._clock()
        if self._throttled(now):
            self.logger.log_refresh(RefreshOutcome.SKIPPED_THROTTLED.value, silent)
            return RefreshOutcome.SKIPPED_THROTTLED

        self.state.phase = SyncPhase.FETCHING
        self.state.last_fetch_started = now
        start = time.time()
        try:
            result = await self._fetch()
            self._record_success()
            await self._apply(result)
        except RateLimitError as e:
            self._record_rate_limit()
            wait_seconds = max(e.retry_after_seconds or 0, self.state.backoff_seconds)
            self.logger.log_refresh(
                RefreshOutcome.RATE_LIMITED.value,
                silent,
                backoff_seconds=self.state.backoff_seconds,
            )
            if silent:
                return RefreshOutcome.RATE_LIMITED
            raise RateLimitError(wait_seconds) from e
        except DispatchError as e:
            self.state.last_error = e.message
            self.logger.log_refresh(RefreshOutcome.FAILED.value, silent, error=e.message)
            if silent:
                return RefreshOutcome.FAILED
            raise
        finally:
            self.state.phase = SyncPhase.IDLE

        self.logger.log_refresh(
            RefreshOutcome.APPLIED.value,
            silent,
            duration_ms=(time.time() - start) * 1000,
        )
        return RefreshOutcome.APPLIED

    def start(self) -> None:
        """Start the background timer."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        self.logger.logger.info("sync_timer_started", period_seconds=self.timer_period)

    async def stop(self) -> None:
        """Clear the timer. A fetch already issued still runs to completion."""
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self.logger.logger.info("sync_timer_stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.timer_period)
            refresh = asyncio.ensure_future(self.refresh(silent=True))
            refresh.add_done_callback(self._finish_background_refresh)
            self._refresh_task = refresh
            try:
                # shielded so cancelling the timer does not abort a fetch in flight
                await asyncio.shield(refresh)
            except asyncio.CancelledError:
                raise
            except Exception:
                # reported by _finish_background_refresh
                continue

    def _finish_background_refresh(self, task: asyncio.Future) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.state.last_error = str(exc)
            self.logger.log_error(str(exc), during="background_refresh")
