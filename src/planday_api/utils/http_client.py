"""HTTP transport for the Planday API.

HTTPClient wraps an aiohttp session with connection pooling, timeouts and
JSON-oriented default headers. It never retries or paces anything itself:
PlandayClient routes each call through the scheduler and turns the
returned HTTPResponse into a result or an ApiError. Only failures below
HTTP (refused connections, timeouts, broken streams) raise here.

Example usage:
    async with create_planday_client(settings) as http:
        response = await http.get(
            f"{settings.base_url}/hr/v1.0/departments",
            headers=bearer_headers(token, settings.client_id),
        )
        if response.is_success:
            departments = response.json()["data"]
"""

from __future__ import annotations

import asyncio
import json as jsonlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from planday_api.config.settings import SchedulerSettings

logger = logging.getLogger(__name__)

USER_AGENT = "planday-api/0.1"


class ContentType(Enum):
    """Content types the client distinguishes."""

    JSON = "application/json"
    HTML = "text/html"
    TEXT = "text/plain"
    BINARY = "application/octet-stream"


@dataclass(frozen=True, slots=True)
class HTTPClientConfig:
    """Transport settings.

    Attributes:
        timeout: Socket read timeout in seconds
        connect_timeout: Connection timeout in seconds
        total_timeout: Upper bound for a whole request in seconds
        user_agent: User-Agent header value
        max_connections: Size of the connection pool
        max_connections_per_host: Pool size per host. The scheduler's
                                  concurrency ceiling should fit in it.
        verify_ssl: Whether to verify SSL certificates
    """

    timeout: float = 30.0
    connect_timeout: float = 10.0
    total_timeout: float = 120.0
    user_agent: str = USER_AGENT
    max_connections: int = 50
    max_connections_per_host: int = 20
    verify_ssl: bool = True

    @property
    def default_headers(self) -> dict[str, str]:
        """Headers sent with every request."""
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
        }


def bearer_headers(access_token: str, client_id: str) -> dict[str, str]:
    """Build the authentication headers the Open API expects.

    Args:
        access_token: OAuth access token
        client_id: Application client id

    Returns:
        Authorization and X-ClientId headers
    """
    return {
        "Authorization": f"Bearer {access_token}",
        "X-ClientId": client_id,
    }


@dataclass
class HTTPResponse:
    """A fully read HTTP response.

    Attributes:
        status: HTTP status code
        headers: Response headers
        content: Raw body
        url: Final URL after redirects
        content_type: Content type detected from the Content-Type header
    """

    status: int
    headers: dict[str, str]
    content: bytes
    url: str
    content_type: ContentType = ContentType.BINARY

    @classmethod
    async def from_aiohttp_response(
        cls, response: aiohttp.ClientResponse
    ) -> HTTPResponse:
        """Read an aiohttp response into an HTTPResponse.

        Args:
            response: Open aiohttp response. Its body is read completely.

        Returns:
            HTTPResponse holding the status, headers and body
        """
        return cls(
            status=response.status,
            headers=dict(response.headers),
            content=await response.read(),
            url=str(response.url),
            content_type=cls._detect_content_type(
                response.headers.get("Content-Type", "")
            ),
        )

    @staticmethod
    def _detect_content_type(content_type_header: str) -> ContentType:
        header_lower = content_type_header.lower()
        # Covers application/problem+json as well
        if "json" in header_lower:
            return ContentType.JSON
        if "text/html" in header_lower:
            return ContentType.HTML
        if "text/plain" in header_lower:
            return ContentType.TEXT
        return ContentType.BINARY

    def json(self) -> Any:
        """Decode the body as JSON.

        Returns:
            The decoded document

        Raises:
            ValueError: If the body is not UTF-8 JSON
        """
        try:
            return jsonlib.loads(self.content.decode("utf-8"))
        except (jsonlib.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValueError(f"Invalid JSON response: {e}") from e

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the body as text, replacing undecodable bytes.

        Args:
            encoding: Character encoding to use

        Returns:
            Decoded text
        """
        return self.content.decode(encoding, errors="replace")

    @property
    def is_success(self) -> bool:
        """Check for a 2xx status."""
        return 200 <= self.status < 300

    @property
    def is_empty(self) -> bool:
        """Check for a 204 or a blank body."""
        return self.status == 204 or not self.content.strip()

    @property
    def retry_after(self) -> float | None:
        """Parse the Retry-After header.

        Only the delay-seconds form is understood. Planday does not send
        HTTP dates here.

        Returns:
            Seconds to wait (never negative), or None if absent or invalid
        """
        value = self.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return max(float(value), 0.0)
        except ValueError:
            return None


class HTTPClientError(Exception):
    """A request that produced no HTTP response.

    Attributes:
        url: URL of the failed request
        cause: Underlying aiohttp or asyncio exception
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.cause = cause


class ConnectionError(HTTPClientError):
    """The server could not be reached."""


class TimeoutError(HTTPClientError):
    """The server did not answer in time."""


class HTTPClient:
    """Async HTTP client over a pooled aiohttp session.

    The session is created on first use. Use the client as an async
    context manager, or call close(), so the pool is released.

    Example:
        async with HTTPClient(HTTPClientConfig(timeout=10.0)) as http:
            response = await http.post(auth_url, data={"grant_type": "..."})
    """

    def __init__(self, config: HTTPClientConfig | None = None) -> None:
        """Initialize the HTTP client.

        Args:
            config: Transport settings. Uses defaults if not provided.
        """
        self.config = config or HTTPClientConfig()
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HTTPClient:
        await self._create_session()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _create_session(self) -> None:
        """Open the pooled session unless one is already open."""
        if self._session is not None:
            return

        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(
                limit=self.config.max_connections,
                limit_per_host=self.config.max_connections_per_host,
                ssl=self.config.verify_ssl,
            ),
            timeout=aiohttp.ClientTimeout(
                total=self.config.total_timeout,
                connect=self.config.connect_timeout,
                sock_read=self.config.timeout,
            ),
            headers=self.config.default_headers,
        )
        logger.debug(
            "Opened HTTP session (pool %d, %d per host)",
            self.config.max_connections,
            self.config.max_connections_per_host,
        )

    async def close(self) -> None:
        """Close the session. Safe to call more than once."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.debug("Closed HTTP session")

    @property
    def is_open(self) -> bool:
        """Check if the session is open."""
        return self._session is not None and not self._session.closed

    async def get(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | Sequence[tuple[str, str]] | None = None,
        timeout: float | None = None,
    ) -> HTTPResponse:
        """Perform a GET request.

        Args:
            url: Absolute URL
            headers: Headers added to the defaults
            params: Query parameters, as a mapping or as (name, value) pairs
            timeout: Total timeout override for this request

        Returns:
            HTTPResponse, whatever its status

        Raises:
            ConnectionError: If the server cannot be reached
            TimeoutError: If the request times out
            HTTPClientError: For other transport failures
        """
        return await self.request(
            "GET", url, headers=headers, params=params, timeout=timeout
        )

    async def post(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        data: Mapping[str, str] | bytes | str | None = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> HTTPResponse:
        """Perform a POST request.

        Args:
            url: Absolute URL
            headers: Headers added to the defaults
            data: Form fields (sent url-encoded) or a raw body
            json: Document sent as a JSON body
            timeout: Total timeout override for this request

        Returns:
            HTTPResponse, whatever its status
        """
        return await self.request(
            "POST", url, headers=headers, data=data, json=json, timeout=timeout
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | Sequence[tuple[str, str]] | None = None,
        data: Mapping[str, str] | bytes | str | None = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> HTTPResponse:
        """Perform a request and read the whole response.

        Non-2xx responses are returned, not raised.

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Headers added to the defaults
            params: Query parameters, as a mapping or as (name, value) pairs
            data: Form fields or raw body
            json: Document sent as a JSON body
            timeout: Total timeout override for this request

        Returns:
            HTTPResponse, whatever its status

        Raises:
            ConnectionError: If the server cannot be reached
            TimeoutError: If the request times out
            HTTPClientError: For other transport failures
        """
        await self._create_session()
        if self._session is None:
            raise RuntimeError("HTTP session not initialized")

        kwargs: dict[str, Any] = {}
        if headers:
            kwargs["headers"] = dict(headers)
        if params:
            kwargs["params"] = params
        if data is not None:
            kwargs["data"] = data if isinstance(data, bytes | str) else dict(data)
        if json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        logger.debug("HTTP %s %s", method, url)

        try:
            async with self._session.request(method, url, **kwargs) as response:
                http_response = await HTTPResponse.from_aiohttp_response(response)
        except aiohttp.ClientConnectorError as e:
            logger.warning("Connection error for %s: %s", url, e)
            raise ConnectionError(
                f"Failed to connect to {url}", url=url, cause=e
            ) from e
        except (aiohttp.ServerTimeoutError, asyncio.TimeoutError) as e:
            logger.warning("Timeout for %s: %s", url, e)
            raise TimeoutError(f"Request timed out for {url}", url=url, cause=e) from e
        except aiohttp.ClientError as e:
            logger.warning("HTTP error for %s: %s", url, e)
            raise HTTPClientError(f"HTTP error for {url}: {e}", url=url, cause=e) from e

        logger.debug("HTTP %s %s -> %d", method, url, http_response.status)
        return http_response


def create_planday_client(settings: SchedulerSettings) -> HTTPClient:
    """Create a transport sized for the configured scheduler.

    The per-host pool leaves room for the token endpoint next to a full
    set of concurrent API requests.

    Args:
        settings: Scheduler and connection settings

    Returns:
        HTTPClient for the Planday Open API
    """
    return HTTPClient(
        HTTPClientConfig(
            timeout=settings.http_timeout,
            max_connections_per_host=settings.max_concurrency + 2,
        )
    )
