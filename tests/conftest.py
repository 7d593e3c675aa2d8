"""Shared pytest fixtures for Planday API tests.

Fixtures are organized into categories:
- Time fixtures (a manually advanced clock)
- Scheduler fixtures (fast queues and retry policies)
- Mock transport and client fixtures
- Sample payload fixtures

Usage:
    # In any test file, fixtures are automatically available:
    async def test_example(make_queue):
        queue = make_queue(max_concurrency=2)
        assert await queue.submit(lambda: some_coroutine()) == ...
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from planday_api.config.settings import SchedulerSettings
from planday_api.scheduler.request_queue import RequestQueue
from planday_api.scheduler.retry_manager import RetryManager, RetryPolicy
from planday_api.scheduler.speed_controller import SpeedController, SpeedTier
from planday_api.utils.http_client import ContentType, HTTPResponse

# Delays small enough that the speed tier never throttles a test
FAST_TIER_DELAYS = {
    SpeedTier.FAST: 0.001,
    SpeedTier.MEDIUM: 0.002,
    SpeedTier.SLOW: 0.004,
}


# =============================================================================
# Time Fixtures
# =============================================================================


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    """A manually advanced clock starting at t=1000."""
    return FakeClock()


# =============================================================================
# Scheduler Fixtures
# =============================================================================


@pytest.fixture
def make_queue() -> Callable[..., RequestQueue]:
    """Factory fixture for queues whose speed tier does not slow tests down.

    Example:
        def test_example(make_queue):
            queue = make_queue(max_concurrency=1, per_second_limit=5)
    """

    def _make(
        max_concurrency: int = 10,
        per_second_limit: int = 100,
        per_minute_limit: int = 1000,
        **kwargs: Any,
    ) -> RequestQueue:
        speed = kwargs.pop(
            "speed_controller", None
        ) or SpeedController(tier_delays=FAST_TIER_DELAYS, jitter=0.0)
        return RequestQueue(
            max_concurrency=max_concurrency,
            per_second_limit=per_second_limit,
            per_minute_limit=per_minute_limit,
            speed_controller=speed,
            **kwargs,
        )

    return _make


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy with millisecond backoff."""
    return RetryPolicy(
        max_retries=4, backoff_schedule=(0.01, 0.02, 0.04), max_delay=1.0
    )


@pytest.fixture
def retry_manager(
    make_queue: Callable[..., RequestQueue], fast_policy: RetryPolicy
) -> RetryManager:
    """Retry manager over a fast queue."""
    return RetryManager(make_queue(), fast_policy)


@pytest.fixture
def settings() -> SchedulerSettings:
    """Settings with millisecond backoff and no credentials."""
    return SchedulerSettings(
        backoff_schedule_ms=[1, 2, 4],
        refresh_token=None,
        per_second_limit=100,
        per_minute_limit=1000,
    )


# =============================================================================
# Mock Transport Fixtures
# =============================================================================


def make_response(
    status: int = 200,
    body: Any = None,
    *,
    content: bytes | None = None,
    content_type: ContentType = ContentType.JSON,
    headers: dict[str, str] | None = None,
) -> HTTPResponse:
    """Build an HTTPResponse from a JSON-serializable body."""
    if content is None:
        content = b"" if body is None else json.dumps(body).encode()
    return HTTPResponse(
        status=status,
        headers=headers or {},
        content=content,
        url="https://openapi.planday.com",
        content_type=content_type,
    )


@pytest.fixture
def mock_http_client() -> MagicMock:
    """HTTPClient stand-in whose request() returns an empty JSON object."""
    client = MagicMock()
    client.request = AsyncMock(return_value=make_response(body={}))
    client.post = AsyncMock(return_value=make_response(body={}))
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_planday_client(settings: SchedulerSettings) -> MagicMock:
    """PlandayClient stand-in for service tests.

    Set ``mock_planday_client.request.side_effect`` to a coroutine function
    taking (path, **kwargs) to route responses.
    """
    client = MagicMock()
    client.settings = settings
    client.request = AsyncMock(return_value={})
    client.speed_controller.paced_delay.return_value = 0.0
    return client


# =============================================================================
# Sample Data Fixtures
# =============================================================================


def employee_payload(employee_id: int, **overrides: Any) -> dict[str, Any]:
    """A Planday employee record as returned by /hr/v1.0/employees."""
    payload: dict[str, Any] = {
        "id": employee_id,
        "firstName": f"First{employee_id}",
        "lastName": f"Last{employee_id}",
        "userName": f"employee{employee_id}@example.com",
        "departments": [10],
        "employeeGroups": [100, 200],
        "hiredFrom": "2023-01-15",
        "gender": "Female",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def sample_employee() -> dict[str, Any]:
    """Single employee payload."""
    return employee_payload(42)


@pytest.fixture
def response_factory() -> Callable[..., HTTPResponse]:
    """Factory fixture for transport responses (see make_response)."""
    return make_response


@pytest.fixture
def employee_factory() -> Callable[..., dict[str, Any]]:
    """Factory fixture for employee payloads (see employee_payload)."""
    return employee_payload
