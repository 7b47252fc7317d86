"""Tests for client IP extraction and the rate limit route dependency."""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from starlette.datastructures import Headers

from waitlist_api.adapters.rate_limit.base import RateLimitResult
from waitlist_api.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from waitlist_api.core.config import RateLimitSettings
from waitlist_api.core.rate_limit import (
    UNKNOWN_CLIENT_IP,
    build_rate_limit_headers,
    get_client_ip,
    rate_limit,
)


class TestGetClientIp:
    def test_prefers_first_forwarded_hop(self) -> None:
        headers = Headers({"X-Forwarded-For": " 203.0.113.7 , 10.0.0.1", "X-Real-IP": "10.0.0.2"})

        assert get_client_ip(headers) == "203.0.113.7"

    def test_falls_back_to_real_ip(self) -> None:
        assert get_client_ip(Headers({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"

    def test_empty_forwarded_hop_uses_real_ip(self) -> None:
        headers = Headers({"X-Forwarded-For": " , 10.0.0.1", "X-Real-IP": "198.51.100.4"})

        assert get_client_ip(headers) == "198.51.100.4"

    def test_unknown_without_proxy_headers(self) -> None:
        assert get_client_ip(Headers({})) == UNKNOWN_CLIENT_IP


class TestBuildHeaders:
    def test_allowed_request_has_no_retry_after(self) -> None:
        headers = build_rate_limit_headers(
            RateLimitResult(success=True, limit=5, remaining=3, reset_at=1060)
        )

        assert headers == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "3",
            "X-RateLimit-Reset": "1060",
        }

    def test_denied_request_has_retry_after(self) -> None:
        headers = build_rate_limit_headers(
            RateLimitResult(success=False, limit=5, remaining=0, reset_at=1060),
            now=1000.5,
        )

        assert headers["Retry-After"] == "60"

    def test_retry_after_never_negative(self) -> None:
        headers = build_rate_limit_headers(
            RateLimitResult(success=False, limit=5, remaining=0, reset_at=1000),
            now=1010.0,
        )

        assert headers["Retry-After"] == "0"


def _app(limiter) -> FastAPI:
    app = FastAPI()
    app.state.rate_limiter = limiter

    @app.get("/limited", dependencies=[Depends(rate_limit("strict", "test"))])
    async def limited() -> dict:
        return {"ok": True}

    return app


class TestRateLimitDependency:
    def test_keys_are_scoped_per_client_ip(self) -> None:
        limiter = Mock()
        limiter.consume.return_value = RateLimitResult(success=True, limit=5, remaining=4, reset_at=1)
        client = TestClient(_app(limiter))

        client.get("/limited", headers={"X-Forwarded-For": "203.0.113.7"})

        limiter.consume.assert_called_once_with("test:203.0.113.7", limit=5, window_ms=60_000)

    def test_denies_after_strict_budget(self) -> None:
        client = TestClient(_app(InMemoryFixedWindowRateLimiter(cleanup_probability=0.0)))

        statuses = [client.get("/limited").status_code for _ in range(6)]

        assert statuses == [200] * 5 + [429]

    @patch("waitlist_api.core.rate_limit.settings")
    def test_disabled_limiting_skips_backend(self, mock_settings) -> None:
        mock_settings.rate_limit.enabled = False
        limiter = Mock()
        client = TestClient(_app(limiter))

        response = client.get("/limited")

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
        limiter.consume.assert_not_called()


def test_unknown_preset_is_rejected() -> None:
    with pytest.raises(ValueError):
        RateLimitSettings().preset("extreme")
