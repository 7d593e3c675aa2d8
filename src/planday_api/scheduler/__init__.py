"""Adaptive rate-limited request scheduler.

This package provides the components every API call flows through:
- RequestQueue for priority admission under concurrency and rate windows
- SpeedController for adaptive pacing from success/error history
- RetryManager with scheduled backoff and priority boosting
- BatchLoader for progressive, failure-tolerant bulk loads
- The error taxonomy shared by all of them
"""

from planday_api.scheduler.batch_loader import (
    BatchLoader,
    BatchOutcome,
    BatchProgress,
    ItemFailure,
)
from planday_api.scheduler.errors import (
    ApiError,
    ClientError,
    ErrorKind,
    MaxRetriesExceededError,
    NetworkError,
    QueueClearedError,
    RateLimitedError,
    ResponseValidationError,
    SchedulerError,
    ServerError,
    classify_error,
)
from planday_api.scheduler.request_queue import (
    OperationState,
    QueuedOperation,
    QueueStatistics,
    RateLimitInfo,
    RateWindow,
    RequestQueue,
)
from planday_api.scheduler.retry_manager import (
    RetryManager,
    RetryPolicy,
    RetryResult,
)
from planday_api.scheduler.speed_controller import (
    SpeedController,
    SpeedState,
    SpeedTier,
)

__all__ = [
    "ApiError",
    "BatchLoader",
    "BatchOutcome",
    "BatchProgress",
    "ClientError",
    "ErrorKind",
    "ItemFailure",
    "MaxRetriesExceededError",
    "NetworkError",
    "OperationState",
    "QueueClearedError",
    "QueueStatistics",
    "QueuedOperation",
    "RateLimitInfo",
    "RateLimitedError",
    "RateWindow",
    "RequestQueue",
    "ResponseValidationError",
    "RetryManager",
    "RetryPolicy",
    "RetryResult",
    "SchedulerError",
    "ServerError",
    "SpeedController",
    "SpeedState",
    "SpeedTier",
    "classify_error",
]
