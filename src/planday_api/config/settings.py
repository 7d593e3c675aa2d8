"""Scheduler and client configuration using pydantic-settings.

All settings can be overridden via environment variables with the
PLANDAY_ prefix. A .env file in the project root is loaded first if
present.

Example:
    export PLANDAY_MAX_CONCURRENCY=5
    export PLANDAY_REFRESH_TOKEN=...
    export PLANDAY_BACKOFF_SCHEDULE_MS='[500, 1000, 2000]'
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from planday_api.scheduler.speed_controller import SpeedTier

logger = logging.getLogger(__name__)

# Load .env file from project root
_env_path = Path(__file__).resolve().parents[3] / ".env"
if _env_path.exists():
    load_dotenv(_env_path)
    logger.debug("Loaded environment from %s", _env_path)


class SchedulerSettings(BaseSettings):
    """Configuration for the request scheduler and the Planday client.

    Scheduler limits:
        max_concurrency: Maximum operations executing at once
        per_second_limit: Dispatches allowed in any trailing second
        per_minute_limit: Dispatches allowed in any trailing minute
        initial_speed_tier: Pacing tier at start-up (fast, medium, slow)
        max_retries: Retries after the first attempt of a request
        backoff_schedule_ms: Wait before each retry, in milliseconds
        success_threshold: Consecutive successes needed to speed up
        min_dwell_seconds: Minimum time in a tier before speeding up

    Planday connection:
        base_url: Planday Open API base URL
        auth_url: OAuth token endpoint
        client_id: Application client id (sent as X-ClientId)
        refresh_token: Refresh token used to obtain access tokens
        http_timeout: Per-request transport timeout in seconds
    """

    model_config = SettingsConfigDict(
        env_prefix="PLANDAY_",
        case_sensitive=False,
    )

    # Scheduler
    max_concurrency: int = Field(default=10, gt=0)
    per_second_limit: int = Field(default=18, gt=0)
    per_minute_limit: int = Field(default=1000, gt=0)
    initial_speed_tier: SpeedTier = SpeedTier.FAST
    max_retries: int = Field(default=4, ge=0)
    backoff_schedule_ms: list[int] = [1000, 2000, 4000, 8000, 10000]
    success_threshold: int = Field(default=15, gt=0)
    min_dwell_seconds: float = Field(default=5.0, ge=0)

    # Planday connection
    base_url: str = "https://openapi.planday.com"
    auth_url: str = "https://id.planday.com/connect/token"
    client_id: str = "13000bf2-dd1f-41ab-a1a0-eeec783f50d7"
    refresh_token: str | None = None
    http_timeout: float = Field(default=30.0, gt=0)

    @field_validator("backoff_schedule_ms")
    @classmethod
    def _check_backoff_schedule(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("backoff_schedule_ms must not be empty")
        if any(delay < 0 for delay in value):
            raise ValueError("backoff_schedule_ms delays must be non-negative")
        return value

    @field_validator("base_url", "auth_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _check_rate_limits(self) -> SchedulerSettings:
        if self.per_minute_limit < self.per_second_limit:
            raise ValueError("per_minute_limit must be >= per_second_limit")
        return self


@lru_cache
def get_settings() -> SchedulerSettings:
    """Get cached settings instance.

    Returns:
        SchedulerSettings loaded from environment.
    """
    return SchedulerSettings()
