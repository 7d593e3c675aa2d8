"""Authenticated, rate-limited Planday API client."""

from planday_api.client.auth import (
    RefreshTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)
from planday_api.client.core import PlandayClient

__all__ = [
    "PlandayClient",
    "RefreshTokenProvider",
    "StaticTokenProvider",
    "TokenProvider",
]
