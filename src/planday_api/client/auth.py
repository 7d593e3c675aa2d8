"""Access token providers for the Planday API.

The client asks a TokenProvider for a bearer token before every attempt.
RefreshTokenProvider exchanges a long-lived refresh token for short-lived
access tokens and caches each one until shortly before it expires.
Tokens are only ever held in memory.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Protocol

from planday_api.scheduler.errors import ApiError, ClientError, NetworkError
from planday_api.utils.http_client import HTTPClientError

if TYPE_CHECKING:
    from collections.abc import Callable

    from planday_api.utils.http_client import HTTPClient

logger = logging.getLogger(__name__)

# Refresh this long before the access token actually expires
DEFAULT_REFRESH_BUFFER = 300.0


class TokenProvider(Protocol):
    """Protocol for anything that can supply a bearer token."""

    async def get_access_token(self) -> str:
        """Return a currently valid access token."""
        ...


class StaticTokenProvider:
    """Provides a fixed, pre-issued access token."""

    def __init__(self, token: str) -> None:
        if not token:
            raise ValueError("token must not be empty")
        self._token = token

    async def get_access_token(self) -> str:
        return self._token


class RefreshTokenProvider:
    """Obtains access tokens with the OAuth refresh-token grant.

    Concurrent callers that find the token missing or about to expire share
    a single refresh request.

    Example usage:
        provider = RefreshTokenProvider(
            http_client,
            auth_url="https://id.planday.com/connect/token",
            client_id=settings.client_id,
            refresh_token=settings.refresh_token,
        )
        token = await provider.get_access_token()
    """

    def __init__(
        self,
        http_client: HTTPClient,
        *,
        auth_url: str,
        client_id: str,
        refresh_token: str,
        refresh_buffer: float = DEFAULT_REFRESH_BUFFER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the provider.

        Args:
            http_client: Transport used for the token endpoint
            auth_url: OAuth token endpoint URL
            client_id: Planday application client id
            refresh_token: Refresh token to exchange
            refresh_buffer: Seconds before expiry at which to refresh
            clock: Monotonic time source
        """
        if not refresh_token:
            raise ValueError("refresh_token must not be empty")
        if refresh_buffer < 0:
            raise ValueError("refresh_buffer must be non-negative")

        self._http = http_client
        self._auth_url = auth_url
        self._client_id = client_id
        self._refresh_token = refresh_token
        self._refresh_buffer = refresh_buffer
        self._clock = clock

        self._access_token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def needs_refresh(self) -> bool:
        """Check if the cached token is missing or expires soon."""
        if self._access_token is None:
            return True
        return self._clock() >= self._expires_at - self._refresh_buffer

    async def get_access_token(self) -> str:
        """Return a valid access token, refreshing it if needed.

        Raises:
            ClientError: If the token endpoint rejects the refresh
            NetworkError: If the token endpoint cannot be reached
        """
        if not self.needs_refresh and self._access_token is not None:
            return self._access_token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self.needs_refresh or self._access_token is None:
                await self._refresh()
            assert self._access_token is not None
            return self._access_token

    def invalidate(self) -> None:
        """Drop the cached access token so the next call refreshes."""
        self._access_token = None
        self._expires_at = 0.0

    async def _refresh(self) -> None:
        """Exchange the refresh token for a new access token."""
        logger.debug("Refreshing access token")
        try:
            response = await self._http.post(
                self._auth_url,
                headers={"Accept": "application/json"},
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": self._refresh_token,
                    "client_id": self._client_id,
                },
            )
        except HTTPClientError as e:
            self.invalidate()
            raise NetworkError(f"Token refresh failed: {e}", cause=e) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not response.is_success:
            self.invalidate()
            description = body.get("error_description") or body.get("error")
            raise ApiError.from_status(
                response.status,
                f"Token refresh failed: {description or f'HTTP {response.status}'}",
                retry_after=response.retry_after,
                details=body,
            )

        access_token = body.get("access_token")
        expires_in = body.get("expires_in")
        if not access_token or not isinstance(expires_in, int | float):
            self.invalidate()
            raise ClientError(
                "Token refresh failed: response is missing access_token "
                "or expires_in",
                status=401,
                details=body,
            )

        self._access_token = access_token
        self._expires_at = self._clock() + float(expires_in)
        if body.get("refresh_token"):
            self._refresh_token = body["refresh_token"]

        logger.info("Access token refreshed (expires in %ds)", int(expires_in))
