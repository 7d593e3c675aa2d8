"""Error taxonomy for scheduled API operations.

Every failure that reaches the scheduler is one of a closed set of kinds.
Three kinds are transient and worth retrying, two are permanent:

    RATE_LIMITED     HTTP 429                       retryable
    SERVER_ERROR     HTTP 5xx                       retryable
    NETWORK_ERROR    connection failure / timeout   retryable
    CLIENT_ERROR     HTTP 4xx other than 429        permanent
    VALIDATION_ERROR malformed response payload     permanent

Example usage:
    try:
        data = await client.request("/hr/v1.0/employees")
    except RateLimitedError as e:
        logger.warning("Throttled, server asked for %s s", e.retry_after)
    except ApiError as e:
        print(e.user_message)
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

import aiohttp

from planday_api.utils.http_client import HTTPClientError


class ErrorKind(Enum):
    """Classification of an operation failure."""

    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    CLIENT_ERROR = "client_error"
    VALIDATION_ERROR = "validation_error"

    @property
    def is_retryable(self) -> bool:
        """Check if failures of this kind are transient."""
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR, ErrorKind.NETWORK_ERROR}
)

# Kinds that tell the server is pushing back and the client should slow down
THROTTLING_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR}
)


class SchedulerError(Exception):
    """Base exception for scheduler errors."""

    def __init__(
        self,
        message: str,
        entity_id: int | str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize the scheduler error.

        Args:
            message: Human-readable error description
            entity_id: Entity the failed operation belonged to, if any
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id
        self.cause = cause

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.entity_id is not None:
            parts.append(f"entity_id={self.entity_id}")
        return " ".join(parts)


class ApiError(SchedulerError):
    """Failure reported by the remote API or the transport in front of it.

    Attributes:
        kind: Classification of the failure
        status: HTTP status code, None for transport-level failures
        retry_after: Server-suggested wait in seconds, if any
        details: Decoded error payload or diagnostic context
        attempts: Attempts made before the error ended retrying, once a
                  RetryManager has given up on it
    """

    kind: ErrorKind = ErrorKind.CLIENT_ERROR

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status = status
        self.retry_after = retry_after
        self.details = details or {}
        self.attempts: int | None = None

    @property
    def is_retryable(self) -> bool:
        """Check if this error is transient."""
        return self.kind.is_retryable

    @property
    def user_message(self) -> str:
        """Friendly explanation suitable for showing to an end user."""
        if self.status == 401:
            return "Authentication failed. Please check your token and try again."
        if self.status == 403:
            return "You do not have permission to access this resource."
        if self.status == 404:
            return "The requested resource was not found."
        return _USER_MESSAGES.get(self.kind) or self.message

    @classmethod
    def from_status(
        cls,
        status: int,
        message: str,
        *,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
        entity_id: int | str | None = None,
    ) -> ApiError:
        """Build the error variant matching an HTTP status code.

        Args:
            status: HTTP response status code (expected >= 400)
            message: Error description from the response
            retry_after: Retry-After hint in seconds
            details: Decoded error body
            entity_id: Entity the request belonged to

        Returns:
            RateLimitedError, ServerError or ClientError
        """
        error_cls: type[ApiError]
        if status == 429:
            error_cls = RateLimitedError
            message = f"Rate limit exceeded. {message}".strip()
        elif status >= 500:
            error_cls = ServerError
        else:
            error_cls = ClientError
        return error_cls(
            message,
            status=status,
            retry_after=retry_after,
            details=details,
            entity_id=entity_id,
        )


class RateLimitedError(ApiError):
    """Raised when the API answers 429 Too Many Requests."""

    kind = ErrorKind.RATE_LIMITED


class ServerError(ApiError):
    """Raised for 5xx responses."""

    kind = ErrorKind.SERVER_ERROR


class NetworkError(ApiError):
    """Raised when the request never produced a response."""

    kind = ErrorKind.NETWORK_ERROR


class ClientError(ApiError):
    """Raised for 4xx responses other than 429."""

    kind = ErrorKind.CLIENT_ERROR


class ResponseValidationError(ApiError):
    """Raised when a successful response has an unexpected shape."""

    kind = ErrorKind.VALIDATION_ERROR


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment and try again.",
    ErrorKind.SERVER_ERROR: "Server error. Please try again later.",
    ErrorKind.NETWORK_ERROR: (
        "Network connection failed. Please check your internet connection."
    ),
    ErrorKind.VALIDATION_ERROR: (
        "Received an unexpected response. This may indicate a proxy or "
        "deployment issue."
    ),
}


class QueueClearedError(SchedulerError):
    """Raised for pending operations dropped by RequestQueue.clear_queue()."""

    def __init__(self, message: str = "Queue cleared", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class MaxRetriesExceededError(SchedulerError):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: BaseException | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_error = last_error

    @property
    def last_kind(self) -> ErrorKind | None:
        """Classification of the final underlying error."""
        if self.last_error is None:
            return None
        return classify_error(self.last_error)


def classify_error(error: BaseException) -> ErrorKind | None:
    """Map an exception onto the error taxonomy.

    Args:
        error: Exception raised by an operation

    Returns:
        The matching ErrorKind, or None for errors outside the taxonomy.
        Callers treat None as permanent.
    """
    if isinstance(error, ApiError):
        return error.kind
    if isinstance(error, TimeoutError | asyncio.TimeoutError):
        return ErrorKind.NETWORK_ERROR
    if isinstance(error, HTTPClientError | aiohttp.ClientError):
        return ErrorKind.NETWORK_ERROR
    return None
