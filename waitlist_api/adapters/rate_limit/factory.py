"""Factory for the application rate limiter."""

from __future__ import annotations

import logging

import redis
from redis.exceptions import RedisError

from waitlist_api.adapters.rate_limit.base import AbstractRateLimiter
from waitlist_api.adapters.rate_limit.fallback import FallbackRateLimiter
from waitlist_api.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from waitlist_api.adapters.rate_limit.redis_sliding_window import RedisSlidingWindowRateLimiter
from waitlist_api.core.config import RateLimitSettings

logger = logging.getLogger(__name__)


def create_redis_client(rate_limit_settings: RateLimitSettings) -> redis.Redis:
    """Build a Redis client whose calls time out instead of blocking requests."""

    return redis.Redis.from_url(
        rate_limit_settings.redis_url,
        password=rate_limit_settings.redis_token or None,
        socket_timeout=rate_limit_settings.timeout_seconds,
        socket_connect_timeout=rate_limit_settings.timeout_seconds,
        decode_responses=True,
    )


def create_rate_limiter(
    rate_limit_settings: RateLimitSettings,
    *,
    production: bool = False,
) -> FallbackRateLimiter:
    """Instantiate the limiter chain described by configuration.

    Reads the shared backend URL/token from RateLimitSettings. A missing or
    malformed backend configuration never fails startup: the limiter simply
    runs on its in-memory fallback.

    Args:
        rate_limit_settings: Rate limiting configuration.
        production: Warn when running without a shared backend.

    Returns:
        FallbackRateLimiter wrapping the distributed limiter when available.
    """

    primary: AbstractRateLimiter | None = None

    if rate_limit_settings.redis_url:
        try:
            client = create_redis_client(rate_limit_settings)
            primary = RedisSlidingWindowRateLimiter(client, prefix=rate_limit_settings.prefix)
        except (RedisError, ValueError) as exc:
            logger.error(
                "rate_limit.backend_init_failed",
                extra={"backend": "redis", "error_type": type(exc).__name__},
            )
    elif production:
        logger.warning(
            "rate_limit.backend_not_configured",
            extra={"backend": "memory", "hint": "Set RATE_LIMIT_REDIS_URL"},
        )

    return FallbackRateLimiter(primary, InMemoryFixedWindowRateLimiter())
