"""Adaptive speed control for request pacing.

The controller watches operation outcomes and picks one of three discrete
speed tiers. Each tier maps to a baseline delay between requests:

    FAST    0.056 s   ~18 req/s, just under the API's 20 req/s hard cap
    MEDIUM  0.120 s   ~8 req/s
    SLOW    0.300 s   ~3 req/s

Throttling outcomes (429 or 5xx) downgrade one tier immediately. A run of
consecutive successes upgrades one tier, but only after the current tier
has been held for a minimum dwell interval, so the tier cannot flap.

Example usage:
    speed = SpeedController(success_threshold=15)

    speed.record_error(ErrorKind.RATE_LIMITED)   # FAST -> MEDIUM
    for _ in range(15):
        speed.record_success()                   # MEDIUM -> FAST after dwell

    await asyncio.sleep(speed.delay)             # self-paced callers
"""

from __future__ import annotations

import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from planday_api.scheduler.errors import THROTTLING_KINDS, ErrorKind

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class SpeedTier(Enum):
    """Discrete loading speed."""

    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


TIER_DELAYS: dict[SpeedTier, float] = {
    SpeedTier.FAST: 0.056,
    SpeedTier.MEDIUM: 0.120,
    SpeedTier.SLOW: 0.300,
}

_DOWNGRADE: dict[SpeedTier, SpeedTier] = {
    SpeedTier.FAST: SpeedTier.MEDIUM,
    SpeedTier.MEDIUM: SpeedTier.SLOW,
    SpeedTier.SLOW: SpeedTier.SLOW,
}

_UPGRADE: dict[SpeedTier, SpeedTier] = {
    SpeedTier.SLOW: SpeedTier.MEDIUM,
    SpeedTier.MEDIUM: SpeedTier.FAST,
    SpeedTier.FAST: SpeedTier.FAST,
}


@dataclass(frozen=True, slots=True)
class SpeedState:
    """Snapshot of the controller.

    Attributes:
        tier: Current speed tier
        consecutive_successes: Successes since the last error or tier change
        recent_error_count: Throttling errors inside the error window
        delay: Baseline delay for the tier in seconds
        tier_since: Clock reading when the tier was entered
    """

    tier: SpeedTier
    consecutive_successes: int
    recent_error_count: int
    delay: float
    tier_since: float


class SpeedController:
    """Selects a speed tier from recent success/error history.

    Attributes:
        success_threshold: Consecutive successes needed to upgrade
        min_dwell: Seconds a tier must be held before upgrading
        error_window: Seconds an error counts towards recent_error_count
    """

    def __init__(
        self,
        initial_tier: SpeedTier = SpeedTier.FAST,
        *,
        success_threshold: int = 15,
        min_dwell: float = 5.0,
        error_window: float = 60.0,
        tier_delays: dict[SpeedTier, float] | None = None,
        jitter: float = 0.0025,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the speed controller.

        Args:
            initial_tier: Tier to start in
            success_threshold: Consecutive successes needed to upgrade
            min_dwell: Minimum seconds in a tier before an upgrade
            error_window: Length of the sliding error window in seconds
            tier_delays: Override of the per-tier baseline delays
            jitter: Maximum random offset (seconds) applied by paced_delay()
            clock: Monotonic time source
        """
        if success_threshold < 1:
            raise ValueError("success_threshold must be at least 1")
        if min_dwell < 0:
            raise ValueError("min_dwell must be non-negative")
        if error_window <= 0:
            raise ValueError("error_window must be positive")

        self.success_threshold = success_threshold
        self.min_dwell = min_dwell
        self.error_window = error_window
        self._tier_delays = dict(TIER_DELAYS)
        if tier_delays:
            self._tier_delays.update(tier_delays)
        self._jitter = jitter
        self._clock = clock

        self._tier = initial_tier
        self._tier_since = clock()
        self._consecutive_successes = 0
        self._error_times: deque[float] = deque()
        self._last_error_at: float | None = None

    @property
    def tier(self) -> SpeedTier:
        """Current speed tier."""
        return self._tier

    @property
    def delay(self) -> float:
        """Baseline delay in seconds for the current tier."""
        return self._tier_delays[self._tier]

    @property
    def max_rate(self) -> int:
        """Requests per second implied by the current delay."""
        if self.delay <= 0:
            return 2**31 - 1
        return max(1, round(1.0 / self.delay))

    @property
    def consecutive_successes(self) -> int:
        """Successes observed since the last error or tier change."""
        return self._consecutive_successes

    @property
    def recent_error_count(self) -> int:
        """Throttling errors recorded inside the sliding error window."""
        self._prune_errors(self._clock())
        return len(self._error_times)

    @property
    def seconds_since_last_error(self) -> float | None:
        """Seconds since the last throttling error, None if there was none."""
        if self._last_error_at is None:
            return None
        return self._clock() - self._last_error_at

    def paced_delay(self) -> float:
        """Delay with a small random offset, for callers pacing themselves.

        The offset spreads out requests from several clients that would
        otherwise tick in lockstep.
        """
        offset = random.uniform(-self._jitter, self._jitter)  # noqa: S311
        return max(self.delay + offset, 0.0)

    def record_success(self) -> SpeedTier:
        """Record a successful operation.

        Returns:
            The tier after applying the transition rules
        """
        self._consecutive_successes += 1

        if (
            self._tier is not SpeedTier.FAST
            and self._consecutive_successes >= self.success_threshold
            and self._clock() - self._tier_since >= self.min_dwell
        ):
            successes = self._consecutive_successes
            self._change_tier(_UPGRADE[self._tier])
            logger.info(
                "Speed increased to %s after %d consecutive successes",
                self._tier.value,
                successes,
            )

        return self._tier

    def record_error(self, kind: ErrorKind) -> SpeedTier:
        """Record a failed operation.

        Only throttling kinds (rate limited, server error) affect the tier;
        other failures say nothing about server load.

        Args:
            kind: Classification of the failure

        Returns:
            The tier after applying the transition rules
        """
        if kind not in THROTTLING_KINDS:
            return self._tier

        now = self._clock()
        self._error_times.append(now)
        self._last_error_at = now
        self._prune_errors(now)

        previous = self._tier
        self._change_tier(_DOWNGRADE[self._tier])

        if self._tier is not previous:
            logger.warning(
                "Speed decreased to %s after %s (%d recent errors)",
                self._tier.value,
                kind.value,
                len(self._error_times),
            )
        return self._tier

    def snapshot(self) -> SpeedState:
        """Return the current state as an immutable snapshot."""
        return SpeedState(
            tier=self._tier,
            consecutive_successes=self._consecutive_successes,
            recent_error_count=self.recent_error_count,
            delay=self.delay,
            tier_since=self._tier_since,
        )

    def _change_tier(self, tier: SpeedTier) -> None:
        """Enter a tier and reset the success counter."""
        self._consecutive_successes = 0
        if tier is not self._tier:
            self._tier = tier
            self._tier_since = self._clock()

    def _prune_errors(self, now: float) -> None:
        """Drop error timestamps older than the error window."""
        cutoff = now - self.error_window
        while self._error_times and self._error_times[0] <= cutoff:
            self._error_times.popleft()
