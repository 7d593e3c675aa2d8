"""Tests for SchedulerSettings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from planday_api.config.settings import SchedulerSettings, get_settings
from planday_api.scheduler.speed_controller import SpeedTier


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove PLANDAY_ variables that would leak into the defaults."""
    for name in (
        "PLANDAY_MAX_CONCURRENCY",
        "PLANDAY_PER_SECOND_LIMIT",
        "PLANDAY_PER_MINUTE_LIMIT",
        "PLANDAY_INITIAL_SPEED_TIER",
        "PLANDAY_MAX_RETRIES",
        "PLANDAY_BACKOFF_SCHEDULE_MS",
        "PLANDAY_REFRESH_TOKEN",
        "PLANDAY_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestSchedulerSettings:
    """Tests for defaults, overrides and validation."""

    def test_defaults(self) -> None:
        """Defaults match the Planday Open API limits."""
        settings = SchedulerSettings()

        assert settings.max_concurrency == 10
        assert settings.per_second_limit == 18
        assert settings.per_minute_limit == 1000
        assert settings.initial_speed_tier is SpeedTier.FAST
        assert settings.max_retries == 4
        assert settings.backoff_schedule_ms == [1000, 2000, 4000, 8000, 10000]
        assert settings.success_threshold == 15
        assert settings.base_url == "https://openapi.planday.com"
        assert settings.refresh_token is None

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """PLANDAY_ variables override the defaults."""
        monkeypatch.setenv("PLANDAY_MAX_CONCURRENCY", "3")
        monkeypatch.setenv("PLANDAY_INITIAL_SPEED_TIER", "slow")
        monkeypatch.setenv("PLANDAY_BACKOFF_SCHEDULE_MS", "[500, 1500]")
        monkeypatch.setenv("PLANDAY_REFRESH_TOKEN", "secret")

        settings = SchedulerSettings()

        assert settings.max_concurrency == 3
        assert settings.initial_speed_tier is SpeedTier.SLOW
        assert settings.backoff_schedule_ms == [500, 1500]
        assert settings.refresh_token == "secret"

    def test_trailing_slash_is_stripped(self) -> None:
        """URLs are normalized so paths can be appended."""
        settings = SchedulerSettings(base_url="https://example.test/")

        assert settings.base_url == "https://example.test"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_concurrency": 0},
            {"max_retries": -1},
            {"backoff_schedule_ms": []},
            {"backoff_schedule_ms": [100, -1]},
            {"per_second_limit": 50, "per_minute_limit": 20},
            {"initial_speed_tier": "turbo"},
        ],
    )
    def test_invalid_values(self, kwargs: dict[str, object]) -> None:
        """Invalid values are rejected."""
        with pytest.raises(ValidationError):
            SchedulerSettings(**kwargs)  # type: ignore[arg-type]


class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_is_cached(self) -> None:
        """get_settings() returns the same instance until the cache is cleared."""
        get_settings.cache_clear()
        try:
            first = get_settings()
            assert get_settings() is first
        finally:
            get_settings.cache_clear()
