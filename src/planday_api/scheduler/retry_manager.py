"""Retry manager with scheduled backoff and priority boosting.

Operations are submitted to a RequestQueue. When an attempt fails with a
retryable error (rate limited, server error, network error) the manager
waits according to the backoff schedule and submits the operation again
at a boosted priority, so retries are serviced ahead of fresh work.

The delay before retry n (0-indexed) is:
    delay = backoff_schedule[min(n, len(backoff_schedule) - 1)]

raised to the server's Retry-After hint when one is given.

Example usage:
    queue = RequestQueue(max_concurrency=10, per_second_limit=18)
    retries = RetryManager(queue, RetryPolicy(max_retries=4))

    try:
        salary = await retries.execute(
            lambda: fetch_salary(employee_id),
            priority=300,
            entity_id=employee_id,
            operation_name="fetch_salary",
        )
    except MaxRetriesExceededError as e:
        logger.error("Gave up after %d attempts: %s", e.attempts, e.last_error)
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from planday_api.scheduler.errors import (
    ApiError,
    ErrorKind,
    MaxRetriesExceededError,
    QueueClearedError,
    classify_error,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from planday_api.config.settings import SchedulerSettings
    from planday_api.scheduler.request_queue import RequestQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BACKOFF_SCHEDULE: tuple[float, ...] = (1.0, 2.0, 4.0, 8.0, 10.0)

RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    kind for kind in ErrorKind if kind.is_retryable
)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum retries after the first attempt (default: 4)
        backoff_schedule: Wait in seconds before each retry; the last entry
                          repeats once the schedule is exhausted
        max_delay: Cap applied to server Retry-After hints (default: 60.0)
        jitter_factor: Random jitter as fraction of delay (default: 0.0)
        priority_boost: Amount subtracted from the priority of a retry
        retryable_kinds: Error kinds that trigger a retry
    """

    max_retries: int = 4
    backoff_schedule: tuple[float, ...] = DEFAULT_BACKOFF_SCHEDULE
    max_delay: float = 60.0
    jitter_factor: float = 0.0
    priority_boost: int = 1000
    retryable_kinds: frozenset[ErrorKind] = field(
        default_factory=lambda: RETRYABLE_KINDS
    )

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if not self.backoff_schedule:
            raise ValueError("backoff_schedule must not be empty")
        if any(delay < 0 for delay in self.backoff_schedule):
            raise ValueError("backoff_schedule delays must be non-negative")
        if self.max_delay < max(self.backoff_schedule):
            raise ValueError("max_delay must be >= the largest scheduled delay")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")
        if self.priority_boost < 1:
            raise ValueError("priority_boost must be positive")

    @classmethod
    def from_settings(cls, settings: SchedulerSettings) -> RetryPolicy:
        """Build a policy from settings (schedule given in milliseconds)."""
        schedule = tuple(ms / 1000.0 for ms in settings.backoff_schedule_ms)
        return cls(
            max_retries=settings.max_retries,
            backoff_schedule=schedule,
            max_delay=max(60.0, *schedule),
        )

    def delay_for(self, retry_index: int, retry_after: float | None = None) -> float:
        """Calculate delay before a retry.

        Args:
            retry_index: 0 for the first retry, 1 for the second, ...
            retry_after: Server-specified delay from Retry-After header

        Returns:
            Delay in seconds before the retry is resubmitted
        """
        last = len(self.backoff_schedule) - 1
        delay = self.backoff_schedule[min(retry_index, last)]

        if retry_after is not None:
            # Respect the server's hint, but cap at max_delay
            delay = max(delay, min(retry_after, self.max_delay))

        jitter = delay * self.jitter_factor * random.random()  # noqa: S311
        return delay + jitter

    def is_retryable(self, error: BaseException) -> bool:
        """Check if an error should trigger a retry."""
        kind = classify_error(error)
        return kind is not None and kind in self.retryable_kinds


@dataclass
class RetryResult:
    """Result of a retried operation.

    Attributes:
        value: The returned value if successful
        attempts: Total number of attempts made (1 = no retries)
        total_delay: Total time spent waiting between retries
        final_error: The error if the operation failed, None if successful
    """

    value: Any = None
    attempts: int = 1
    total_delay: float = 0.0
    final_error: BaseException | None = None

    @property
    def is_successful(self) -> bool:
        """Check if the operation succeeded."""
        return self.final_error is None


class RetryManager:
    """Runs operations through a RequestQueue, retrying transient failures.

    Permanent failures (client errors, malformed responses, and anything
    outside the error taxonomy) propagate on the first attempt. Retryable
    failures are resubmitted until max_retries is exhausted, after which
    MaxRetriesExceededError carries the last underlying error.
    """

    def __init__(self, queue: RequestQueue, policy: RetryPolicy | None = None) -> None:
        """Initialize the retry manager.

        Args:
            queue: Queue every attempt is submitted to
            policy: Retry policy. Uses defaults if not provided.
        """
        self.queue = queue
        self.policy = policy or RetryPolicy()

    async def execute(
        self,
        operation_factory: Callable[[], Awaitable[T]],
        max_retries: int | None = None,
        *,
        priority: int = 0,
        entity_id: int | str | None = None,
        operation_name: str = "operation",
    ) -> T:
        """Execute an operation with automatic retry on transient failure.

        Args:
            operation_factory: Zero-argument callable producing a fresh
                               awaitable for each attempt
            max_retries: Override of the policy's retry count
            priority: Priority of the first attempt
            entity_id: Entity the operation belongs to, for diagnostics
            operation_name: Name for logging purposes

        Returns:
            The result of the operation if successful

        Raises:
            MaxRetriesExceededError: If all retry attempts fail
            QueueClearedError: If the queue was cleared while pending
            Exception: Any non-retryable exception from the operation. An
                       ApiError carries the attempt count in `attempts`.
        """
        result = await self._run_attempts(
            operation_factory,
            max_retries,
            priority=priority,
            entity_id=entity_id,
            operation_name=operation_name,
        )
        if result.final_error is not None:
            raise result.final_error
        value: T = result.value
        return value

    async def execute_with_result(
        self,
        operation_factory: Callable[[], Awaitable[T]],
        max_retries: int | None = None,
        *,
        priority: int = 0,
        entity_id: int | str | None = None,
        operation_name: str = "operation",
    ) -> RetryResult:
        """Execute an operation and return detailed retry statistics.

        Unlike execute(), this method never raises MaxRetriesExceededError
        or the operation's own errors. Instead, it returns a RetryResult
        whose final_error is the last underlying error.

        Returns:
            RetryResult with success/failure status and statistics
        """
        result = await self._run_attempts(
            operation_factory,
            max_retries,
            priority=priority,
            entity_id=entity_id,
            operation_name=operation_name,
        )
        if isinstance(result.final_error, MaxRetriesExceededError):
            result.final_error = result.final_error.last_error
        return result

    async def _run_attempts(
        self,
        operation_factory: Callable[[], Awaitable[Any]],
        max_retries: int | None,
        *,
        priority: int,
        entity_id: int | str | None,
        operation_name: str,
    ) -> RetryResult:
        """Submit attempts until success, a permanent error, or exhaustion.

        QueueClearedError is never captured in the result; it propagates.
        """
        retries_allowed = (
            self.policy.max_retries if max_retries is None else max_retries
        )
        if retries_allowed < 0:
            raise ValueError("max_retries must be non-negative")

        current_priority = priority
        total_delay = 0.0
        attempt = 0

        while True:
            attempt += 1
            try:
                value = await self.queue.submit(
                    operation_factory,
                    priority=current_priority,
                    entity_id=entity_id,
                    attempt=attempt,
                )
            except QueueClearedError:
                raise
            except Exception as e:
                if not self.policy.is_retryable(e):
                    if isinstance(e, ApiError) and e.attempts is None:
                        e.attempts = attempt
                    logger.error(
                        "%s failed with non-retryable error (entity=%s): %s",
                        operation_name,
                        entity_id,
                        e,
                    )
                    return RetryResult(
                        attempts=attempt, total_delay=total_delay, final_error=e
                    )

                if attempt > retries_allowed:
                    logger.error(
                        "%s failed after %d attempts (entity=%s): %s",
                        operation_name,
                        attempt,
                        entity_id,
                        e,
                    )
                    exhausted = MaxRetriesExceededError(
                        f"{operation_name} failed after {attempt} attempts",
                        attempts=attempt,
                        last_error=e,
                        entity_id=entity_id,
                        cause=e,
                    )
                    exhausted.__cause__ = e
                    return RetryResult(
                        attempts=attempt,
                        total_delay=total_delay,
                        final_error=exhausted,
                    )

                retry_after = e.retry_after if isinstance(e, ApiError) else None
                delay = self.policy.delay_for(attempt - 1, retry_after)
                total_delay += delay
                current_priority = priority - self.policy.priority_boost

                logger.warning(
                    "%s failed (attempt %d/%d, entity=%s): %s. "
                    "Retrying in %.2fs at priority %d",
                    operation_name,
                    attempt,
                    retries_allowed + 1,
                    entity_id,
                    e,
                    delay,
                    current_priority,
                )
                await asyncio.sleep(delay)
            else:
                if attempt > 1:
                    logger.info(
                        "%s succeeded after %d attempts "
                        "(entity=%s, total delay: %.2fs)",
                        operation_name,
                        attempt,
                        entity_id,
                        total_delay,
                    )
                return RetryResult(
                    value=value, attempts=attempt, total_delay=total_delay
                )
