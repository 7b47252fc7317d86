"""Composite limiter: shared backend first, local limiter when it fails.

Falling back is a designed-for degraded mode. Failures are logged (with the
key hashed) and never surfaced to the caller, so a rate limit check always
yields a decision.
"""

from __future__ import annotations

import logging

from redis.exceptions import RedisError

from waitlist_api.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from waitlist_api.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from waitlist_api.core.logging import hash_identifier

logger = logging.getLogger(__name__)


class FallbackRateLimiter(AbstractRateLimiter):
    """Try ``primary`` and answer from ``fallback`` when it is unavailable.

    Attributes:
        primary: Distributed limiter, or None when none is configured.
        fallback: Process-local limiter used when primary is absent or failing.
    """

    def __init__(
        self,
        primary: AbstractRateLimiter | None,
        fallback: InMemoryFixedWindowRateLimiter | None = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback or InMemoryFixedWindowRateLimiter()

    @property
    def is_distributed(self) -> bool:
        return self.primary is not None

    def consume(self, key: str, *, limit: int, window_ms: int) -> RateLimitResult:
        if self.primary is not None:
            try:
                return self.primary.consume(key, limit=limit, window_ms=window_ms)
            except (RedisError, OSError) as exc:
                logger.warning(
                    "rate_limit.fallback",
                    extra={
                        "key_hash": hash_identifier(key),
                        "error_type": type(exc).__name__,
                        "backend": "redis",
                    },
                )

        return self.fallback.consume(key, limit=limit, window_ms=window_ms)
