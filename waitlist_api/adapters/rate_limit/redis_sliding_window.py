"""Redis-backed sliding-window rate limiter (shared across processes).

The sliding window is approximated from two fixed windows: the count in the
current window plus the previous window's count weighted by the share of it
that still overlaps the sliding window. Both reads and the increment run in a
single Lua script, so concurrent callers on any instance see one consistent
counter.

Redis errors and socket timeouts propagate to the caller; use
FallbackRateLimiter to degrade to a local limiter instead.
"""

from __future__ import annotations

import math
import time
from typing import Any, Callable

from waitlist_api.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitResult,
    validate_consume_args,
)

# Returns the remaining budget after the increment, or -1 when denied.
SLIDING_WINDOW_SCRIPT = """
local current_key = KEYS[1]
local previous_key = KEYS[2]
local limit = tonumber(ARGV[1])
local now = tonumber(ARGV[2])
local window = tonumber(ARGV[3])

local current = tonumber(redis.call("GET", current_key) or "0")
local previous = tonumber(redis.call("GET", previous_key) or "0")
local elapsed = (now % window) / window
local weighted_previous = math.floor((1 - elapsed) * previous)

if weighted_previous + current >= limit then
  return -1
end

local updated = redis.call("INCR", current_key)
if updated == 1 then
  redis.call("PEXPIRE", current_key, window * 2 + 1000)
end
return limit - (updated + weighted_previous)
"""


class RedisSlidingWindowRateLimiter(AbstractRateLimiter):
    """Sliding-window limiter evaluated atomically inside Redis.

    Args:
        client: A ``redis.Redis`` client (or any object exposing
            ``register_script``), ideally built with socket timeouts.
        prefix: Namespace for limiter keys.
        clock: Time source function returning UNIX time in seconds.
    """

    def __init__(
        self,
        client: Any,
        *,
        prefix: str = "waitlist-ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._clock = clock
        self._script = client.register_script(SLIDING_WINDOW_SCRIPT)

    def _keys(self, key: str, window_index: int) -> list[str]:
        return [
            f"{self._prefix}:{key}:{window_index}",
            f"{self._prefix}:{key}:{window_index - 1}",
        ]

    def consume(self, key: str, *, limit: int, window_ms: int) -> RateLimitResult:
        """Consume one unit of budget in the shared store.

        Raises:
            ValueError: If key is empty or limit/window_ms are invalid.
            redis.exceptions.RedisError: If the backend call fails or times out.
        """
        validate_consume_args(key, limit, window_ms)

        now_ms = int(self._clock() * 1000)
        window_index = now_ms // window_ms
        reset_at = int(math.ceil((window_index + 1) * window_ms / 1000))

        remaining = int(
            self._script(
                keys=self._keys(key, window_index),
                args=[limit, now_ms, window_ms],
            )
        )

        if remaining < 0:
            return RateLimitResult(success=False, limit=limit, remaining=0, reset_at=reset_at)

        return RateLimitResult(
            success=True,
            limit=limit,
            remaining=max(0, remaining),
            reset_at=reset_at,
        )
