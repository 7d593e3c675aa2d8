"""Priority request queue with concurrency and rolling-window rate limits.

The queue is the single ingress point for work sent to the API. Operations
wait in a priority heap (lower number first, FIFO among equals) and a
dispatcher task admits the head of the heap only when all of these hold:

- fewer than max_concurrency operations are in flight
- fewer than the effective per-second limit were dispatched in the last 1 s
- fewer than per_minute_limit were dispatched in the last 60 s

The effective per-second limit is the configured limit, tightened to the
rate implied by the SpeedController's current tier. Rate windows count
dispatches, not completions, so a window rolling over cannot release a
burst of requests that were already admitted.

Example usage:
    queue = RequestQueue(max_concurrency=10, per_second_limit=18)

    data = await queue.submit(
        lambda: client.get("https://openapi.planday.com/hr/v1.0/employees"),
        priority=100,
        entity_id=None,
    )

    stats = queue.get_statistics()
    print(stats.queue_length, stats.active_count, stats.current_speed_tier)
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from planday_api.scheduler.errors import QueueClearedError, classify_error
from planday_api.scheduler.speed_controller import SpeedController, SpeedTier

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from planday_api.config.settings import SchedulerSettings

logger = logging.getLogger(__name__)

SECOND_WINDOW = 1.0
MINUTE_WINDOW = 60.0


@dataclass
class RateWindow:
    """Rolling record of dispatch timestamps over a fixed time span.

    Attributes:
        window: Length of the window in seconds
        timestamps: Dispatch times still inside the window, oldest first
    """

    window: float
    timestamps: deque[float] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        """Drop timestamps that have left the window."""
        cutoff = now - self.window
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def count(self, now: float) -> int:
        """Number of dispatches inside the window ending at now."""
        self.prune(now)
        return len(self.timestamps)

    def record(self, now: float) -> None:
        """Record a dispatch."""
        self.prune(now)
        self.timestamps.append(now)

    def time_until_available(self, limit: int, now: float) -> float:
        """Calculate time until one more dispatch fits under the limit.

        Args:
            limit: Maximum dispatches allowed inside the window
            now: Current clock reading

        Returns:
            Seconds to wait, or 0.0 if a dispatch is allowed now.
        """
        self.prune(now)
        count = len(self.timestamps)
        if count < limit:
            return 0.0
        # The dispatch that must expire before we're back under the limit
        blocking = self.timestamps[count - limit]
        return max(blocking + self.window - now, 0.0)

    def reset_in(self, now: float) -> float:
        """Seconds until the oldest recorded dispatch leaves the window."""
        self.prune(now)
        if not self.timestamps:
            return 0.0
        return max(self.timestamps[0] + self.window - now, 0.0)


class OperationState(Enum):
    """Lifecycle state of a queued operation."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(order=True)
class QueuedOperation:
    """A deferred unit of work waiting for admission.

    Ordering uses (priority, sequence) only, so the heap services lower
    priority numbers first and equal priorities in submission order.

    Attributes:
        priority: Lower numbers are serviced first
        sequence: Monotonic submission counter (FIFO tie-break)
        operation: Zero-argument callable returning an awaitable
        future: Resolved with the operation's result or error
        attempt: Attempt number, 1 for the first submission
        entity_id: Entity the operation belongs to, for diagnostics
        enqueued_at: Clock reading at submission
        operation_id: Unique identifier
        state: Current lifecycle state
    """

    priority: int
    sequence: int
    operation: Callable[[], Awaitable[Any]] = field(compare=False)
    future: asyncio.Future[Any] = field(compare=False, repr=False)
    attempt: int = field(default=1, compare=False)
    entity_id: int | str | None = field(default=None, compare=False)
    enqueued_at: float = field(default=0.0, compare=False)
    operation_id: str = field(
        default_factory=lambda: uuid.uuid4().hex, compare=False
    )
    state: OperationState = field(default=OperationState.PENDING, compare=False)


@dataclass(frozen=True, slots=True)
class QueueStatistics:
    """Point-in-time statistics for monitoring.

    Attributes:
        queue_length: Pending operations not yet dispatched
        active_count: Dispatched operations not yet completed
        current_speed_tier: Tier selected by the SpeedController
        recent_error_count: Throttling errors in the controller's window
        consecutive_successes: Successes since the last error or tier change
        requests_last_second: Dispatches in the trailing second
        requests_last_minute: Dispatches in the trailing minute
        max_concurrency: Concurrency ceiling
    """

    queue_length: int
    active_count: int
    current_speed_tier: SpeedTier
    recent_error_count: int
    consecutive_successes: int
    requests_last_second: int = 0
    requests_last_minute: int = 0
    max_concurrency: int = 0


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    """Rate limit status for display.

    Attributes:
        remaining: Dispatches still allowed by the more restrictive window
        limit: Effective per-second limit
        reset_in: Seconds until the more restrictive window frees a slot
        is_active: Whether any dispatch is inside either window
        current_speed: Current speed tier
    """

    remaining: int
    limit: int
    reset_in: float
    is_active: bool
    current_speed: SpeedTier


class RequestQueue:
    """Admits queued operations under concurrency and rate constraints.

    Only the queue's own dispatch and completion paths mutate the rate
    windows, the active count and the speed controller, so any number of
    callers may submit concurrently.

    Attributes:
        max_concurrency: Maximum operations in flight
        per_second_limit: Maximum dispatches in any trailing second
        per_minute_limit: Maximum dispatches in any trailing minute
    """

    def __init__(
        self,
        max_concurrency: int = 10,
        per_second_limit: int = 18,
        per_minute_limit: int = 1000,
        *,
        speed_controller: SpeedController | None = None,
        initial_speed: SpeedTier = SpeedTier.FAST,
        clock: Callable[[], float] = time.monotonic,
        name: str = "requests",
    ) -> None:
        """Initialize the request queue.

        Args:
            max_concurrency: Maximum operations in flight at once
            per_second_limit: Maximum dispatches per trailing second
            per_minute_limit: Maximum dispatches per trailing minute
            speed_controller: Controller fed with outcomes. Created with
                              initial_speed if not provided.
            initial_speed: Starting tier for a newly created controller
            clock: Monotonic time source for the rate windows
            name: Label used in log messages
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if per_second_limit < 1:
            raise ValueError("per_second_limit must be at least 1")
        if per_minute_limit < per_second_limit:
            raise ValueError("per_minute_limit must be >= per_second_limit")

        self.max_concurrency = max_concurrency
        self.per_second_limit = per_second_limit
        self.per_minute_limit = per_minute_limit
        self.name = name

        self._speed = speed_controller or SpeedController(
            initial_speed, clock=clock
        )
        self._clock = clock

        self._pending: list[QueuedOperation] = []
        self._sequence = itertools.count()
        self._second_window = RateWindow(SECOND_WINDOW)
        self._minute_window = RateWindow(MINUTE_WINDOW)

        self._active = 0
        self._in_flight: set[asyncio.Task[None]] = set()
        self._slot_freed = asyncio.Event()
        self._dispatcher: asyncio.Task[None] | None = None

        logger.debug(
            "Initialized %s queue: concurrency=%d, %d req/s, %d req/min, speed=%s",
            name,
            max_concurrency,
            per_second_limit,
            per_minute_limit,
            self._speed.tier.value,
        )

    @classmethod
    def from_settings(
        cls, settings: SchedulerSettings, *, name: str = "requests"
    ) -> RequestQueue:
        """Build a queue and speed controller from settings."""
        speed = SpeedController(
            SpeedTier(settings.initial_speed_tier),
            success_threshold=settings.success_threshold,
            min_dwell=settings.min_dwell_seconds,
        )
        return cls(
            max_concurrency=settings.max_concurrency,
            per_second_limit=settings.per_second_limit,
            per_minute_limit=settings.per_minute_limit,
            speed_controller=speed,
            name=name,
        )

    @property
    def speed_controller(self) -> SpeedController:
        """The controller that paces this queue."""
        return self._speed

    @property
    def effective_per_second_limit(self) -> int:
        """Per-second limit tightened to the current speed tier."""
        return min(self.per_second_limit, self._speed.max_rate)

    @property
    def queue_length(self) -> int:
        """Number of pending operations."""
        return len(self._pending)

    @property
    def active_count(self) -> int:
        """Number of dispatched operations not yet completed."""
        return self._active

    async def submit(
        self,
        operation: Callable[[], Awaitable[Any]],
        priority: int = 0,
        entity_id: int | str | None = None,
        *,
        attempt: int = 1,
    ) -> Any:
        """Queue an operation and wait for its outcome.

        Args:
            operation: Zero-argument callable returning an awaitable. It is
                       called once, when the operation is dispatched.
            priority: Lower numbers are serviced first
            entity_id: Entity the operation belongs to, for diagnostics
            attempt: Attempt number, for diagnostics

        Returns:
            The operation's result

        Raises:
            QueueClearedError: If clear_queue() dropped the operation
            Exception: Whatever the operation raised
        """
        loop = asyncio.get_running_loop()
        queued = QueuedOperation(
            priority=priority,
            sequence=next(self._sequence),
            operation=operation,
            future=loop.create_future(),
            attempt=attempt,
            entity_id=entity_id,
            enqueued_at=self._clock(),
        )
        heapq.heappush(self._pending, queued)
        self._ensure_dispatcher()
        return await queued.future

    def clear_queue(self) -> int:
        """Reject all pending operations with QueueClearedError.

        Dispatched operations are unaffected and run to completion.

        Returns:
            Number of operations rejected
        """
        pending, self._pending = self._pending, []
        rejected = 0
        for queued in pending:
            queued.state = OperationState.CANCELLED
            if not queued.future.done():
                queued.future.set_exception(
                    QueueClearedError(entity_id=queued.entity_id)
                )
                rejected += 1

        logger.info(
            "%s queue cleared: %d pending operations rejected", self.name, rejected
        )
        return rejected

    def get_statistics(self) -> QueueStatistics:
        """Get detailed statistics for monitoring."""
        now = self._clock()
        return QueueStatistics(
            queue_length=len(self._pending),
            active_count=self._active,
            current_speed_tier=self._speed.tier,
            recent_error_count=self._speed.recent_error_count,
            consecutive_successes=self._speed.consecutive_successes,
            requests_last_second=self._second_window.count(now),
            requests_last_minute=self._minute_window.count(now),
            max_concurrency=self.max_concurrency,
        )

    def get_rate_limit_info(self) -> RateLimitInfo:
        """Get rate limit status, reporting the more restrictive window."""
        now = self._clock()
        limit = self.effective_per_second_limit
        second_remaining = limit - self._second_window.count(now)
        minute_remaining = self.per_minute_limit - self._minute_window.count(now)

        if second_remaining <= minute_remaining:
            reset_in = self._second_window.reset_in(now)
        else:
            reset_in = self._minute_window.reset_in(now)

        return RateLimitInfo(
            remaining=max(min(second_remaining, minute_remaining), 0),
            limit=limit,
            reset_in=reset_in,
            is_active=bool(
                self._second_window.timestamps or self._minute_window.timestamps
            ),
            current_speed=self._speed.tier,
        )

    async def aclose(self) -> None:
        """Reject pending operations and wait for in-flight ones to finish."""
        self.clear_queue()
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        if self._dispatcher is not None and not self._dispatcher.done():
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
        self._dispatcher = None

    async def __aenter__(self) -> RequestQueue:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _ensure_dispatcher(self) -> None:
        """Start the dispatcher task if it is not running."""
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.get_running_loop().create_task(
                self._dispatch_loop(), name=f"{self.name}-dispatcher"
            )

    def _admission_delay(self) -> float:
        """Seconds until both rate windows admit another dispatch."""
        now = self._clock()
        return max(
            self._second_window.time_until_available(
                self.effective_per_second_limit, now
            ),
            self._minute_window.time_until_available(self.per_minute_limit, now),
        )

    async def _dispatch_loop(self) -> None:
        """Admit pending operations until the heap is empty."""
        while self._pending:
            head = self._pending[0]
            if head.future.done():
                # Caller gave up before dispatch
                heapq.heappop(self._pending)
                head.state = OperationState.CANCELLED
                continue

            if self._active >= self.max_concurrency:
                self._slot_freed.clear()
                await self._slot_freed.wait()
                continue

            wait_time = self._admission_delay()
            if wait_time > 0:
                logger.debug(
                    "%s queue: rate limit reached, waiting %.3fs (%d pending)",
                    self.name,
                    wait_time,
                    len(self._pending),
                )
                await asyncio.sleep(wait_time)
                continue

            self._dispatch(heapq.heappop(self._pending))

    def _dispatch(self, queued: QueuedOperation) -> None:
        """Count the dispatch against the windows and start the operation."""
        now = self._clock()
        self._second_window.record(now)
        self._minute_window.record(now)
        self._active += 1
        queued.state = OperationState.DISPATCHED

        task = asyncio.get_running_loop().create_task(self._run(queued))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run(self, queued: QueuedOperation) -> None:
        """Execute a dispatched operation and deliver its outcome."""
        try:
            result = await queued.operation()
        except asyncio.CancelledError:
            queued.state = OperationState.CANCELLED
            if not queued.future.done():
                queued.future.cancel()
            raise
        except Exception as e:
            queued.state = OperationState.FAILED
            kind = classify_error(e)
            if kind is not None:
                self._speed.record_error(kind)
            logger.debug(
                "%s queue: operation %s failed (attempt %d, entity=%s): %s",
                self.name,
                queued.operation_id,
                queued.attempt,
                queued.entity_id,
                e,
            )
            if not queued.future.done():
                queued.future.set_exception(e)
        else:
            queued.state = OperationState.SUCCEEDED
            self._speed.record_success()
            if not queued.future.done():
                queued.future.set_result(result)
        finally:
            self._active -= 1
            self._slot_freed.set()
