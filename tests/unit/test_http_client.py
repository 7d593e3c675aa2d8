"""Tests for the HTTP transport."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from planday_api.config.settings import SchedulerSettings
from planday_api.utils.http_client import (
    USER_AGENT,
    ConnectionError,
    ContentType,
    HTTPClient,
    HTTPClientConfig,
    HTTPClientError,
    HTTPResponse,
    TimeoutError,
    bearer_headers,
    create_planday_client,
)


def _mock_aiohttp_response(
    status: int = 200,
    content: bytes = b"{}",
    headers: dict[str, str] | None = None,
    url: str = "https://openapi.planday.com/hr/v1.0/departments",
) -> AsyncMock:
    response = AsyncMock()
    response.status = status
    response.headers = headers or {}
    response.url = url
    response.read = AsyncMock(return_value=content)
    return response


class TestHTTPClientConfig:
    """Tests for HTTPClientConfig dataclass."""

    def test_default_values(self) -> None:
        """Default configuration values are set correctly."""
        config = HTTPClientConfig()

        assert config.timeout == 30.0
        assert config.connect_timeout == 10.0
        assert config.total_timeout == 120.0
        assert config.user_agent == USER_AGENT
        assert config.verify_ssl is True

    def test_config_is_immutable(self) -> None:
        """HTTPClientConfig is frozen."""
        config = HTTPClientConfig()

        with pytest.raises(AttributeError):
            config.timeout = 999.0  # type: ignore[misc]

    def test_default_headers_property(self) -> None:
        """default_headers asks for JSON and carries the user agent."""
        headers = HTTPClientConfig(user_agent="TestAgent/1.0").default_headers

        assert headers["User-Agent"] == "TestAgent/1.0"
        assert headers["Accept"] == "application/json"


class TestPlandayHelpers:
    """Tests for the Planday-specific transport helpers."""

    def test_bearer_headers(self) -> None:
        """Both the bearer token and the client id are sent."""
        assert bearer_headers("token", "client-id") == {
            "Authorization": "Bearer token",
            "X-ClientId": "client-id",
        }

    def test_client_sized_from_settings(self) -> None:
        """The pool fits the concurrency ceiling plus the token endpoint."""
        settings = SchedulerSettings(max_concurrency=12, http_timeout=7.5)

        client = create_planday_client(settings)

        assert client.config.timeout == 7.5
        assert client.config.max_connections_per_host == 14
        assert not client.is_open


class TestHTTPResponse:
    """Tests for HTTPResponse dataclass."""

    def test_json_parsing(self) -> None:
        """Response content parses as JSON."""
        response = HTTPResponse(
            status=200,
            headers={},
            content=b'{"data": [{"id": 1, "name": "Kitchen"}]}',
            url="https://openapi.planday.com/hr/v1.0/departments",
        )

        assert response.json() == {"data": [{"id": 1, "name": "Kitchen"}]}

    def test_json_parsing_invalid(self) -> None:
        """Invalid JSON raises ValueError."""
        response = HTTPResponse(status=200, headers={}, content=b"<html>", url="x")

        with pytest.raises(ValueError, match="Invalid JSON"):
            response.json()

    def test_is_success(self) -> None:
        """2xx statuses are successes, others are not."""
        assert HTTPResponse(status=204, headers={}, content=b"", url="x").is_success
        assert not HTTPResponse(
            status=429, headers={}, content=b"", url="x"
        ).is_success

    def test_is_empty(self) -> None:
        """204 and whitespace-only bodies count as empty."""
        assert HTTPResponse(status=204, headers={}, content=b"{}", url="x").is_empty
        assert HTTPResponse(status=200, headers={}, content=b"  \n", url="x").is_empty
        assert not HTTPResponse(
            status=200, headers={}, content=b"{}", url="x"
        ).is_empty

    def test_retry_after_present(self) -> None:
        """Retry-After header is parsed as seconds."""
        response = HTTPResponse(
            status=429, headers={"Retry-After": "3"}, content=b"", url="x"
        )

        assert response.retry_after == 3.0

    def test_retry_after_missing(self) -> None:
        """retry_after is None without the header."""
        response = HTTPResponse(status=429, headers={}, content=b"", url="x")

        assert response.retry_after is None

    def test_retry_after_invalid(self) -> None:
        """Non-numeric Retry-After values are ignored."""
        response = HTTPResponse(
            status=429,
            headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"},
            content=b"",
            url="x",
        )

        assert response.retry_after is None

    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("application/json; charset=utf-8", ContentType.JSON),
            ("text/html", ContentType.HTML),
            ("text/plain", ContentType.TEXT),
            ("", ContentType.BINARY),
        ],
    )
    def test_detect_content_type(self, header: str, expected: ContentType) -> None:
        """Content type is detected from the header value."""
        assert HTTPResponse._detect_content_type(header) == expected


class TestHTTPClientErrors:
    """Tests for the transport error hierarchy."""

    def test_http_client_error_with_context(self) -> None:
        """Errors carry the URL and the original exception."""
        cause = OSError("refused")
        error = HTTPClientError("boom", url="https://x", cause=cause)

        assert str(error) == "boom"
        assert error.url == "https://x"
        assert error.cause is cause

    def test_subclasses(self) -> None:
        """Connection and timeout errors are HTTPClientErrors."""
        assert issubclass(ConnectionError, HTTPClientError)
        assert issubclass(TimeoutError, HTTPClientError)


@pytest.mark.asyncio
class TestHTTPClient:
    """Tests for HTTPClient class."""

    async def test_client_context_manager(self) -> None:
        """Client opens a session inside the context and closes it after."""
        async with HTTPClient() as client:
            assert client.is_open

        assert not client.is_open

    async def test_client_close_is_idempotent(self) -> None:
        """Calling close twice is safe."""
        client = HTTPClient()
        await client._create_session()

        await client.close()
        await client.close()

        assert not client.is_open

    async def test_get_request_success(self) -> None:
        """GET returns the wrapped response with detected content type."""
        mock_response = _mock_aiohttp_response(
            content=b'{"data": []}',
            headers={"Content-Type": "application/json"},
        )

        with patch.object(aiohttp.ClientSession, "request") as mock_request:
            mock_request.return_value.__aenter__.return_value = mock_response

            async with HTTPClient() as client:
                response = await client.get(
                    "https://openapi.planday.com/hr/v1.0/departments",
                    headers={"Authorization": "Bearer t"},
                    params=[("special", "Ssn"), ("special", "BirthDate")],
                )

            assert response.status == 200
            assert response.content_type == ContentType.JSON
            assert response.json() == {"data": []}

            call_kwargs = mock_request.call_args[1]
            assert call_kwargs["headers"]["Authorization"] == "Bearer t"
            assert call_kwargs["params"] == [
                ("special", "Ssn"),
                ("special", "BirthDate"),
            ]

    async def test_non_success_status_is_returned(self) -> None:
        """HTTP error statuses are returned, not raised."""
        mock_response = _mock_aiohttp_response(status=503, content=b"")

        with patch.object(aiohttp.ClientSession, "request") as mock_request:
            mock_request.return_value.__aenter__.return_value = mock_response

            async with HTTPClient() as client:
                response = await client.get("https://openapi.planday.com/x")

        assert response.status == 503
        assert not response.is_success

    async def test_post_form_data(self) -> None:
        """Mapping data is sent as form fields."""
        mock_response = _mock_aiohttp_response(content=b'{"access_token": "a"}')

        with patch.object(aiohttp.ClientSession, "request") as mock_request:
            mock_request.return_value.__aenter__.return_value = mock_response

            async with HTTPClient() as client:
                await client.post(
                    "https://id.planday.com/connect/token",
                    data={"grant_type": "refresh_token"},
                )

            assert mock_request.call_args[0][0] == "POST"
            assert mock_request.call_args[1]["data"] == {
                "grant_type": "refresh_token"
            }

    async def test_connection_error_handling(self) -> None:
        """Connection errors are wrapped in ConnectionError."""
        with patch.object(aiohttp.ClientSession, "request") as mock_request:
            mock_request.return_value.__aenter__.side_effect = (
                aiohttp.ClientConnectorError(
                    connection_key=MagicMock(), os_error=OSError("Connection refused")
                )
            )

            async with HTTPClient() as client:
                with pytest.raises(ConnectionError) as exc_info:
                    await client.get("https://openapi.planday.com/x")

            assert exc_info.value.url == "https://openapi.planday.com/x"

    async def test_timeout_error_handling(self) -> None:
        """Timeouts are wrapped in TimeoutError."""
        with patch.object(aiohttp.ClientSession, "request") as mock_request:
            mock_request.return_value.__aenter__.side_effect = (
                aiohttp.ServerTimeoutError("Request timed out")
            )

            async with HTTPClient() as client:
                with pytest.raises(TimeoutError):
                    await client.get("https://openapi.planday.com/x")

    async def test_generic_client_error_handling(self) -> None:
        """Other aiohttp errors are wrapped in HTTPClientError."""
        with patch.object(aiohttp.ClientSession, "request") as mock_request:
            mock_request.return_value.__aenter__.side_effect = aiohttp.ClientError(
                "Generic error"
            )

            async with HTTPClient() as client:
                with pytest.raises(HTTPClientError):
                    await client.get("https://openapi.planday.com/x")
