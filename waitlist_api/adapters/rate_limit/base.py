"""Rate limiter interfaces.

The API should depend on this abstraction (not the concrete implementation)
so storage backends can be swapped or layered with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check/consume operation.

    Attributes:
        success: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window resets.
    """

    success: bool
    limit: int
    remaining: int
    reset_at: int


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def consume(self, key: str, *, limit: int, window_ms: int) -> RateLimitResult:
        """Consume one unit of rate limit budget for a given key.

        Args:
            key: Unique identifier (e.g., "signup:<client ip>").
            limit: Max requests allowed per window.
            window_ms: Window size in milliseconds.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError


def validate_consume_args(key: str, limit: int, window_ms: int) -> None:
    """Shared argument checks for limiter implementations.

    Raises:
        ValueError: If key is empty or limit/window_ms are invalid.
    """
    if not key:
        raise ValueError("key must be a non-empty string")
    if limit < 1:
        raise ValueError("limit must be >= 1")
    if window_ms < 1:
        raise ValueError("window_ms must be >= 1")
