"""Transport helpers shared by the API client and the token provider."""

from planday_api.utils.http_client import (
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

__all__ = [
    # Client
    "HTTPClient",
    "HTTPClientConfig",
    "HTTPResponse",
    "ContentType",
    "bearer_headers",
    "create_planday_client",
    # Transport errors
    "HTTPClientError",
    "ConnectionError",
    "TimeoutError",
]
