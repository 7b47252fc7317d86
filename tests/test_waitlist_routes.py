"""HTTP tests for the waitlist routes."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from waitlist_api.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from waitlist_api.core.app_factory import create_app
from waitlist_api.services.waitlist_ledger import WaitlistLedger

ADMIN_HEADERS = {"X-API-Key": "test-api-key-123"}


@pytest.fixture
def client(ledger: WaitlistLedger, rate_limiter: InMemoryFixedWindowRateLimiter) -> TestClient:
    return TestClient(create_app(ledger=ledger, rate_limiter=rate_limiter))


def _signup(client: TestClient, email: str, ip: str = "203.0.113.1", **extra):
    body = {"email": email, "gdprAccepted": True, **extra}
    return client.post("/v1/waitlist/signup", json=body, headers={"X-Forwarded-For": ip})


class TestSignup:
    def test_first_signup_gets_position_after_baseline(self, client: TestClient) -> None:
        response = _signup(client, "jane@example.com", name="Jane Doe")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["position"] == 848
        assert data["referralCode"].startswith("REF")
        assert data["referralUrl"] == f"https://waitlist.test/?ref={data['referralCode']}"

    def test_rate_limit_headers_on_success(self, client: TestClient) -> None:
        response = _signup(client, "jane@example.com")

        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"
        assert "X-RateLimit-Reset" in response.headers

    def test_existing_email_gets_identical_response(self, client: TestClient) -> None:
        first = _signup(client, "jane@example.com").json()
        second = _signup(client, "JANE@example.com", name="Other").json()

        assert second == first

    def test_referral_signup_moves_referrer_up(self, client: TestClient, ledger: WaitlistLedger) -> None:
        referrer = _signup(client, "a@example.com").json()

        referred = _signup(client, "b@example.com", referredBy=referrer["referralCode"]).json()

        assert referred["position"] == 849
        assert ledger.get_by_email("a@example.com").position == 838
        assert ledger.get_by_email("b@example.com").source == "referral"

    def test_consent_is_required(self, client: TestClient, ledger: WaitlistLedger) -> None:
        response = client.post(
            "/v1/waitlist/signup",
            json={"email": "jane@example.com", "gdprAccepted": False},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "consent_required"
        assert ledger.get_total_count() == 0

    @pytest.mark.parametrize(
        "body",
        [
            {"email": "not-an-email", "gdprAccepted": True},
            {"email": "jane@example.com", "gdprAccepted": True, "source": "billboard"},
            {"email": "jane@example.com", "gdprAccepted": True, "name": "x" * 101},
        ],
    )
    def test_invalid_payload_is_rejected(self, client: TestClient, body: dict) -> None:
        response = client.post("/v1/waitlist/signup", json=body)

        assert response.status_code == 422

    def test_sixth_signup_from_same_ip_is_throttled(self, client: TestClient) -> None:
        statuses = [_signup(client, f"user{i}@example.com").status_code for i in range(6)]

        assert statuses == [200] * 5 + [429]

    def test_throttled_response_carries_retry_after(self, client: TestClient) -> None:
        for i in range(5):
            _signup(client, f"user{i}@example.com")

        response = _signup(client, "late@example.com")

        assert response.status_code == 429
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert int(response.headers["Retry-After"]) >= 0

    def test_limits_are_per_client_ip(self, client: TestClient) -> None:
        for i in range(5):
            _signup(client, f"user{i}@example.com", ip="203.0.113.1")

        assert _signup(client, "other@example.com", ip="198.51.100.9").status_code == 200


class TestReferralLookup:
    def test_known_code_is_valid(self, client: TestClient) -> None:
        code = _signup(client, "a@example.com").json()["referralCode"]

        response = client.get(f"/v1/waitlist/referral/{code.lower()}")

        assert response.status_code == 200
        assert response.json() == {"valid": True, "referralCode": code}

    @pytest.mark.parametrize("code", ["REFZZZZZZ", "garbage"])
    def test_unknown_or_malformed_code_is_invalid(self, client: TestClient, code: str) -> None:
        response = client.get(f"/v1/waitlist/referral/{code}")

        assert response.status_code == 200
        assert response.json()["valid"] is False


class TestAdminRoutes:
    def test_position_lookup(self, client: TestClient) -> None:
        _signup(client, "jane@example.com")

        response = client.get(
            "/v1/waitlist/position",
            params={"email": "Jane@Example.com"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "jane@example.com"
        assert data["position"] == 848
        assert data["originalPosition"] == 848
        assert data["referralCount"] == 0

    def test_position_lookup_unknown_email(self, client: TestClient) -> None:
        response = client.get(
            "/v1/waitlist/position",
            params={"email": "ghost@example.com"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 404

    def test_delete_then_delete_again(self, client: TestClient, ledger: WaitlistLedger) -> None:
        _signup(client, "jane@example.com")

        first = client.delete("/v1/waitlist/entries", params={"email": "jane@example.com"}, headers=ADMIN_HEADERS)
        second = client.delete("/v1/waitlist/entries", params={"email": "jane@example.com"}, headers=ADMIN_HEADERS)

        assert first.json() == {"deleted": True}
        assert second.json() == {"deleted": False}
        assert ledger.exists("jane@example.com") is False


class TestStats:
    def test_empty_waitlist_reports_baseline(self, client: TestClient) -> None:
        data = client.get("/v1/waitlist/stats").json()

        assert data["count"] == 847
        assert "lastUpdated" in data

    def test_count_tracks_positions_handed_out(self, client: TestClient) -> None:
        _signup(client, "a@example.com")
        _signup(client, "b@example.com")

        assert client.get("/v1/waitlist/stats").json()["count"] == 849


def test_health_reports_local_limiter(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "rate_limiter": "in_memory"}


def test_openapi_marks_only_admin_routes_as_secured(client: TestClient) -> None:
    paths = client.get("/openapi.json").json()["paths"]

    assert paths["/v1/waitlist/position"]["get"]["security"] == [{"ApiKeyAuth": []}]
    assert paths["/v1/waitlist/entries"]["delete"]["security"] == [{"ApiKeyAuth": []}]
    assert paths["/v1/waitlist/signup"]["post"]["security"] == []
