"""Planday API client.

Every request is routed through a RetryManager and its RequestQueue before
it reaches the HTTP transport, so all callers share one concurrency
ceiling, one pair of rate windows and one adaptive speed tier.

Responses are translated into the scheduler's error taxonomy:
- 2xx JSON returns the decoded body
- 2xx with no body (or a non-JSON, non-HTML body) returns {}
- 2xx HTML raises ResponseValidationError (usually a proxy error page)
- 429 raises RateLimitedError, 5xx ServerError, other 4xx ClientError
- transport failures and timeouts raise NetworkError

Example usage:
    settings = get_settings()
    async with PlandayClient.from_settings(settings) as client:
        departments = await client.request("/hr/v1.0/departments", priority=50)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from planday_api.client.auth import RefreshTokenProvider
from planday_api.config.settings import SchedulerSettings
from planday_api.scheduler.errors import (
    ApiError,
    NetworkError,
    ResponseValidationError,
)
from planday_api.scheduler.request_queue import RequestQueue
from planday_api.scheduler.retry_manager import RetryManager, RetryPolicy
from planday_api.utils.http_client import (
    ContentType,
    HTTPClientError,
    HTTPResponse,
    bearer_headers,
    create_planday_client,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from planday_api.client.auth import TokenProvider
    from planday_api.scheduler.request_queue import QueueStatistics, RateLimitInfo
    from planday_api.scheduler.speed_controller import SpeedController
    from planday_api.utils.http_client import HTTPClient

logger = logging.getLogger(__name__)

CONNECTION_TEST_PATH = "/hr/v1.0/employees"
CONNECTION_TEST_PRIORITY = 1000


class PlandayClient:
    """Authenticated, rate-limited client for the Planday Open API.

    Use as an async context manager so the transport and the queue's
    dispatcher are shut down cleanly.
    """

    def __init__(
        self,
        settings: SchedulerSettings | None = None,
        *,
        token_provider: TokenProvider,
        http_client: HTTPClient | None = None,
        request_queue: RequestQueue | None = None,
        retry_manager: RetryManager | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Scheduler and connection settings. Defaults apply if
                      not provided.
            token_provider: Source of bearer tokens
            http_client: Transport. A new one is created and owned by the
                         client if not provided.
            request_queue: Queue for all requests. Built from settings if
                           not provided. Ignored when retry_manager is given.
            retry_manager: Retry manager wrapping the queue
        """
        self.settings = settings or SchedulerSettings()
        self._token_provider = token_provider

        self._owns_http = http_client is None
        self._http = http_client or create_planday_client(self.settings)

        if retry_manager is None:
            queue = request_queue or RequestQueue.from_settings(
                self.settings, name="api"
            )
            retry_manager = RetryManager(
                queue, RetryPolicy.from_settings(self.settings)
            )
        self._retry_manager = retry_manager

    @classmethod
    def from_settings(
        cls,
        settings: SchedulerSettings,
        *,
        http_client: HTTPClient | None = None,
    ) -> PlandayClient:
        """Build a client that authenticates with the configured refresh token.

        Raises:
            ValueError: If settings has no refresh_token
        """
        if not settings.refresh_token:
            raise ValueError(
                "A refresh token is required (set PLANDAY_REFRESH_TOKEN)"
            )
        http = http_client or create_planday_client(settings)
        provider = RefreshTokenProvider(
            http,
            auth_url=settings.auth_url,
            client_id=settings.client_id,
            refresh_token=settings.refresh_token,
        )
        client = cls(settings, token_provider=provider, http_client=http)
        client._owns_http = http_client is None
        return client

    async def __aenter__(self) -> PlandayClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Shut down the queue and, if owned, the transport."""
        await self._retry_manager.queue.aclose()
        if self._owns_http:
            await self._http.close()

    @property
    def retry_manager(self) -> RetryManager:
        return self._retry_manager

    @property
    def queue(self) -> RequestQueue:
        return self._retry_manager.queue

    @property
    def speed_controller(self) -> SpeedController:
        return self._retry_manager.queue.speed_controller

    async def request(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        priority: int = 0,
        entity_id: int | str | None = None,
        max_retries: int | None = None,
        method: str = "GET",
        json: Any = None,
    ) -> Any:
        """Make an authenticated request through the scheduler.

        Args:
            path: API path relative to base_url, e.g. "/hr/v1.0/employees"
            params: Query parameters
            priority: Queue priority (lower is serviced first)
            entity_id: Entity the request belongs to, for diagnostics
            max_retries: Override of the configured retry count
            method: HTTP method
            json: JSON body for write requests

        Returns:
            The decoded JSON body, or {} for empty responses

        Raises:
            ApiError: Permanent failure (ClientError, ResponseValidationError)
            MaxRetriesExceededError: Transient failures exhausted all retries
            QueueClearedError: The queue was cleared before dispatch
        """
        query = _stringify_params(params)

        async def attempt() -> Any:
            return await self._execute(method, path, query, json, entity_id)

        return await self._retry_manager.execute(
            attempt,
            max_retries,
            priority=priority,
            entity_id=entity_id,
            operation_name=f"{method} {path}",
        )

    async def test_connection(self) -> bool:
        """Check that the API is reachable and the credentials work.

        Returns:
            True if a minimal employee request succeeds, False otherwise
        """
        try:
            await self.request(
                CONNECTION_TEST_PATH,
                params={"limit": 1, "offset": 0},
                priority=CONNECTION_TEST_PRIORITY,
            )
        except Exception as e:
            logger.error("Connection test failed: %s", e)
            return False
        logger.info("Connection test succeeded")
        return True

    def get_statistics(self) -> QueueStatistics:
        """Get statistics of the request queue."""
        return self._retry_manager.queue.get_statistics()

    def get_rate_limit_info(self) -> RateLimitInfo:
        """Get rate limit status of the request queue."""
        return self._retry_manager.queue.get_rate_limit_info()

    def clear_queue(self) -> int:
        """Reject every pending request. Returns the number rejected."""
        return self._retry_manager.queue.clear_queue()

    async def _execute(
        self,
        method: str,
        path: str,
        params: list[tuple[str, str]] | None,
        json: Any,
        entity_id: int | str | None,
    ) -> Any:
        """Perform a single attempt against the transport."""
        token = await self._token_provider.get_access_token()
        headers = bearer_headers(token, self.settings.client_id)
        url = f"{self.settings.base_url}{path}"

        try:
            response = await self._http.request(
                method, url, headers=headers, params=params, json=json
            )
        except HTTPClientError as e:
            raise NetworkError(
                "Network connection failed",
                entity_id=entity_id,
                cause=e,
                details={"url": url, "error": str(e)},
            ) from e

        return _handle_response(response, path, entity_id)


def _handle_response(
    response: HTTPResponse, path: str, entity_id: int | str | None
) -> Any:
    """Translate a transport response into a result or an ApiError."""
    if response.is_success:
        if response.is_empty:
            return {}
        if response.content_type == ContentType.HTML:
            raise ResponseValidationError(
                "Received HTML response instead of JSON",
                status=response.status,
                entity_id=entity_id,
                details={"path": path, "preview": response.text()[:200]},
            )
        if response.content_type != ContentType.JSON:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ResponseValidationError(
                f"Malformed JSON response: {e}",
                status=response.status,
                entity_id=entity_id,
                details={"path": path},
            ) from e

    try:
        body = response.json()
    except ValueError:
        body = None
    details: dict[str, Any] = body if isinstance(body, dict) else {}
    message = (
        details.get("message")
        or details.get("error_description")
        or f"HTTP {response.status}"
    )

    error = ApiError.from_status(
        response.status,
        str(message),
        retry_after=response.retry_after,
        details=details,
        entity_id=entity_id,
    )
    if response.status == 429:
        logger.warning("API rate limit hit on %s (entity=%s)", path, entity_id)
    raise error


def _stringify_params(
    params: Mapping[str, Any] | None,
) -> list[tuple[str, str]] | None:
    """Render query parameters as string pairs.

    None values are dropped, booleans become "true"/"false" and list values
    repeat the key once per element.
    """
    if not params:
        return None
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        values = value if isinstance(value, list | tuple) else [value]
        for item in values:
            if item is None:
                continue
            if isinstance(item, bool):
                item = "true" if item else "false"
            pairs.append((key, str(item)))
    return pairs
