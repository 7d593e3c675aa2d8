"""Tests for access token providers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest

from planday_api.client.auth import RefreshTokenProvider, StaticTokenProvider
from planday_api.scheduler.errors import (
    ClientError,
    ErrorKind,
    NetworkError,
    RateLimitedError,
    ServerError,
    classify_error,
)
from planday_api.utils.http_client import ConnectionError, HTTPResponse

if TYPE_CHECKING:
    from tests.conftest import FakeClock

AUTH_URL = "https://id.planday.com/connect/token"


def _provider(
    http_client: MagicMock, clock: Callable[[], float] | None = None
) -> RefreshTokenProvider:
    kwargs: dict[str, Any] = {}
    if clock is not None:
        kwargs["clock"] = clock
    return RefreshTokenProvider(
        http_client,
        auth_url=AUTH_URL,
        client_id="client-id",
        refresh_token="refresh-1",
        **kwargs,
    )


class TestStaticTokenProvider:
    """Tests for StaticTokenProvider."""

    @pytest.mark.asyncio
    async def test_returns_token(self) -> None:
        """The configured token is returned as-is."""
        assert await StaticTokenProvider("abc").get_access_token() == "abc"

    def test_empty_token_rejected(self) -> None:
        """An empty token raises ValueError."""
        with pytest.raises(ValueError):
            StaticTokenProvider("")


class TestRefreshTokenProviderInit:
    """Tests for RefreshTokenProvider construction."""

    def test_empty_refresh_token_rejected(self, mock_http_client: MagicMock) -> None:
        """A refresh token is required."""
        with pytest.raises(ValueError):
            RefreshTokenProvider(
                mock_http_client, auth_url=AUTH_URL, client_id="c", refresh_token=""
            )

    def test_needs_refresh_initially(self, mock_http_client: MagicMock) -> None:
        """No token is cached before the first call."""
        assert _provider(mock_http_client).needs_refresh is True


@pytest.mark.asyncio
class TestRefreshTokenProvider:
    """Tests for token refresh and caching."""

    async def test_refresh_posts_grant(
        self,
        mock_http_client: MagicMock,
        response_factory: Callable[..., HTTPResponse],
    ) -> None:
        """The refresh-token grant is posted as form data."""
        mock_http_client.post.return_value = response_factory(
            body={"access_token": "access-1", "expires_in": 3600}
        )
        provider = _provider(mock_http_client)

        assert await provider.get_access_token() == "access-1"

        args, kwargs = mock_http_client.post.call_args
        assert args == (AUTH_URL,)
        assert kwargs["data"] == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-1",
            "client_id": "client-id",
        }

    async def test_token_is_cached(
        self,
        mock_http_client: MagicMock,
        response_factory: Callable[..., HTTPResponse],
    ) -> None:
        """A valid token is reused without another refresh."""
        mock_http_client.post.return_value = response_factory(
            body={"access_token": "access-1", "expires_in": 3600}
        )
        provider = _provider(mock_http_client)

        await provider.get_access_token()
        await provider.get_access_token()

        assert mock_http_client.post.await_count == 1

    async def test_concurrent_callers_share_refresh(
        self,
        mock_http_client: MagicMock,
        response_factory: Callable[..., HTTPResponse],
    ) -> None:
        """Callers arriving during a refresh wait for it."""
        response = response_factory(
            body={"access_token": "access-1", "expires_in": 3600}
        )

        async def slow_post(*args: Any, **kwargs: Any) -> HTTPResponse:
            await asyncio.sleep(0.01)
            return response

        mock_http_client.post.side_effect = slow_post
        provider = _provider(mock_http_client)

        tokens = await asyncio.gather(
            *(provider.get_access_token() for _ in range(5))
        )

        assert tokens == ["access-1"] * 5
        assert mock_http_client.post.await_count == 1

    async def test_refreshes_before_expiry(
        self,
        mock_http_client: MagicMock,
        response_factory: Callable[..., HTTPResponse],
        fake_clock: FakeClock,
    ) -> None:
        """The token is refreshed once inside the refresh buffer."""
        mock_http_client.post.side_effect = [
            response_factory(body={"access_token": "access-1", "expires_in": 3600}),
            response_factory(body={"access_token": "access-2", "expires_in": 3600}),
        ]
        provider = _provider(mock_http_client, clock=fake_clock)

        assert await provider.get_access_token() == "access-1"

        fake_clock.advance(3299.0)
        assert await provider.get_access_token() == "access-1"

        fake_clock.advance(1.0)
        assert await provider.get_access_token() == "access-2"
        assert mock_http_client.post.await_count == 2

    async def test_rotated_refresh_token_is_used(
        self,
        mock_http_client: MagicMock,
        response_factory: Callable[..., HTTPResponse],
    ) -> None:
        """A refresh token returned by the endpoint replaces the old one."""
        mock_http_client.post.side_effect = [
            response_factory(
                body={
                    "access_token": "access-1",
                    "expires_in": 3600,
                    "refresh_token": "refresh-2",
                }
            ),
            response_factory(body={"access_token": "access-2", "expires_in": 3600}),
        ]
        provider = _provider(mock_http_client)

        await provider.get_access_token()
        provider.invalidate()
        assert await provider.get_access_token() == "access-2"

        second_call = mock_http_client.post.call_args_list[1]
        assert second_call.kwargs["data"]["refresh_token"] == "refresh-2"

    async def test_rejected_refresh(
        self,
        mock_http_client: MagicMock,
        response_factory: Callable[..., HTTPResponse],
    ) -> None:
        """A 4xx rejection from the token endpoint raises a permanent ClientError."""
        mock_http_client.post.return_value = response_factory(
            status=400,
            body={"error": "invalid_grant", "error_description": "Token revoked"},
        )
        provider = _provider(mock_http_client)

        with pytest.raises(ClientError, match="Token revoked") as exc_info:
            await provider.get_access_token()

        assert exc_info.value.status == 400
        assert provider.needs_refresh is True

    async def test_incomplete_response(
        self,
        mock_http_client: MagicMock,
        response_factory: Callable[..., HTTPResponse],
    ) -> None:
        """A success without access_token or expires_in is an auth failure."""
        mock_http_client.post.return_value = response_factory(
            body={"access_token": "access-1"}
        )

        with pytest.raises(ClientError) as exc_info:
            await _provider(mock_http_client).get_access_token()

        assert exc_info.value.status == 401

    async def test_unreachable_endpoint(self, mock_http_client: MagicMock) -> None:
        """Transport failures raise a retryable NetworkError."""
        mock_http_client.post.side_effect = ConnectionError("refused")

        with pytest.raises(NetworkError) as exc_info:
            await _provider(mock_http_client).get_access_token()

        assert exc_info.value.is_retryable

    async def test_unavailable_endpoint_is_retryable(
        self,
        mock_http_client: MagicMock,
        response_factory: Callable[..., HTTPResponse],
    ) -> None:
        """A 503 from the token endpoint raises a retryable ServerError."""
        mock_http_client.post.return_value = response_factory(
            status=503, body={"error": "unavailable"}
        )
        provider = _provider(mock_http_client)

        with pytest.raises(ServerError) as exc_info:
            await provider.get_access_token()

        assert exc_info.value.status == 503
        assert classify_error(exc_info.value) is ErrorKind.SERVER_ERROR
        assert exc_info.value.is_retryable
        assert provider.needs_refresh is True

    async def test_throttled_endpoint_is_retryable(
        self,
        mock_http_client: MagicMock,
        response_factory: Callable[..., HTTPResponse],
    ) -> None:
        """A 429 from the token endpoint carries its Retry-After hint."""
        mock_http_client.post.return_value = response_factory(
            status=429, body={}, headers={"Retry-After": "2"}
        )

        with pytest.raises(RateLimitedError) as exc_info:
            await _provider(mock_http_client).get_access_token()

        assert classify_error(exc_info.value) is ErrorKind.RATE_LIMITED
        assert exc_info.value.retry_after == 2.0
        assert exc_info.value.is_retryable
