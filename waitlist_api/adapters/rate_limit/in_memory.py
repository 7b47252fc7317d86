"""In-memory fixed-window rate limiter (local fallback).

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Windows start at the first request for a key and are reset lazily on the
  next request after they expire; there is no background timer.
"""

from __future__ import annotations

import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable

from waitlist_api.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitResult,
    validate_consume_args,
)

DEFAULT_CLEANUP_PROBABILITY = 0.01


@dataclass
class _WindowState:
    count: int
    reset_at_ms: float


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a per-key window opened by the key's first request.

    A small fraction of calls (``cleanup_probability``) also sweeps expired
    keys, which bounds memory without a timer.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        cleanup_probability: float = DEFAULT_CLEANUP_PROBABILITY,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            clock: Time source function returning UNIX time in seconds.
            cleanup_probability: Chance per call of sweeping expired keys.
            rng: Source of uniform floats in [0, 1) for the sweep decision.

        Raises:
            ValueError: If cleanup_probability is outside [0, 1].
        """
        if not 0.0 <= cleanup_probability <= 1.0:
            raise ValueError("cleanup_probability must be within [0, 1]")

        self._clock = clock
        self._cleanup_probability = cleanup_probability
        self._rng = rng
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._state_by_key)

    def _now_ms(self) -> float:
        return self._clock() * 1000

    @staticmethod
    def _to_epoch_seconds(ms: float) -> int:
        return int(math.ceil(ms / 1000))

    def cleanup(self) -> int:
        """Evict every expired window.

        Returns:
            Number of keys removed.
        """
        now_ms = self._now_ms()
        with self._lock:
            expired = [k for k, s in self._state_by_key.items() if s.reset_at_ms <= now_ms]
            for key in expired:
                del self._state_by_key[key]
        return len(expired)

    def consume(self, key: str, *, limit: int, window_ms: int) -> RateLimitResult:
        """Consume one unit of budget for the provided key.

        Args:
            key: Unique identifier for rate limiting (e.g., "signup:<ip>").
            limit: Maximum number of allowed requests per window.
            window_ms: Window size in milliseconds.

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty or limit/window_ms are invalid.
        """
        validate_consume_args(key, limit, window_ms)

        if self._rng() < self._cleanup_probability:
            self.cleanup()

        now_ms = self._now_ms()

        with self._lock:
            state = self._state_by_key.get(key)

            if state is None or state.reset_at_ms <= now_ms:
                state = _WindowState(count=1, reset_at_ms=now_ms + window_ms)
                self._state_by_key[key] = state
                return RateLimitResult(
                    success=True,
                    limit=limit,
                    remaining=limit - 1,
                    reset_at=self._to_epoch_seconds(state.reset_at_ms),
                )

            if state.count >= limit:
                return RateLimitResult(
                    success=False,
                    limit=limit,
                    remaining=0,
                    reset_at=self._to_epoch_seconds(state.reset_at_ms),
                )

            state.count += 1
            return RateLimitResult(
                success=True,
                limit=limit,
                remaining=limit - state.count,
                reset_at=self._to_epoch_seconds(state.reset_at_ms),
            )
