"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency factory only.
- Injected limiter: the instance lives on ``app.state`` (built by the app
  factory), so tests can pass in a limiter with a fake backend.
- Always a decision: backend failures degrade inside the limiter.

Rate limiting strategy:
- Per-client-IP limits namespaced by route scope (e.g. "signup:<ip>").
- Named presets (strict, standard, lenient) picked per endpoint sensitivity.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Awaitable, Callable, Mapping

from fastapi import HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from waitlist_api.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from waitlist_api.core.config import RateLimitPresetName, settings
from waitlist_api.core.logging import hash_identifier

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT_IP = "unknown"


def get_client_ip(headers: Mapping[str, str]) -> str:
    """Extract the client IP from proxy headers.

    Prefers the first hop of X-Forwarded-For, then X-Real-IP.

    Args:
        headers: Request headers (case-insensitive mapping, e.g. Starlette's).

    Returns:
        str: Client IP, or "unknown" when no header carries one.
    """

    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_CLIENT_IP


def build_rate_limit_headers(result: RateLimitResult, *, now: float | None = None) -> dict[str, str]:
    """Build standard rate limit response headers.

    Args:
        result: Limiter decision.
        now: Current UNIX time in seconds (defaults to time.time()).

    Returns:
        X-RateLimit-* headers, plus Retry-After when the request was denied.
    """

    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }
    if not result.success:
        current = time.time() if now is None else now
        headers["Retry-After"] = str(max(0, int(math.ceil(result.reset_at - current))))
    return headers


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """Return the limiter attached to the running application."""

    return request.app.state.rate_limiter


def check_rate_limit(
    limiter: AbstractRateLimiter,
    identifier: str,
    preset: RateLimitPresetName,
) -> RateLimitResult:
    """Consume one unit of the named preset's budget for ``identifier``."""

    resolved = settings.rate_limit.preset(preset)
    return limiter.consume(identifier, limit=resolved.limit, window_ms=resolved.window_ms)


def rate_limit(
    preset: RateLimitPresetName,
    scope: str,
) -> Callable[[Request, Response], Awaitable[RateLimitResult | None]]:
    """Build a FastAPI dependency enforcing a named preset per client IP.

    Usage:
        @router.post("/signup", dependencies=[Depends(rate_limit("strict", "signup"))])

    Args:
        preset: Preset name (strict, standard, lenient).
        scope: Key namespace, typically the route's purpose.

    Returns:
        Async dependency raising HTTP 429 when the budget is exhausted.
    """

    async def enforce_rate_limit(request: Request, response: Response) -> RateLimitResult | None:
        if not settings.rate_limit.enabled:
            return None

        limiter = get_rate_limiter(request)
        key = f"{scope}:{get_client_ip(request.headers)}"

        # The distributed backend does blocking network I/O.
        result = await run_in_threadpool(check_rate_limit, limiter, key, preset)
        headers = build_rate_limit_headers(result)

        log_extra = {
            "scope": scope,
            "preset": preset,
            "key_hash": hash_identifier(key),
            "limit": result.limit,
            "remaining": result.remaining,
        }

        if result.success:
            logger.info("rate_limit.allowed", extra=log_extra)
            response.headers.update(headers)
            return result

        logger.warning(
            "rate_limit.exceeded",
            extra={**log_extra, "retry_after_s": headers.get("Retry-After")},
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers=headers,
        )

    return enforce_rate_limit
