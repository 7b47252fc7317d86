"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before anything imports the settings module,
so tests never read a developer's .env file, Redis or snapshot on disk.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("APP_PUBLIC_BASE_URL", "https://waitlist.test")
os.environ.setdefault(
    "WAITLIST_STORAGE_PATH",
    str(Path(tempfile.gettempdir()) / "waitlist-api-tests" / "snapshot.json"),
)
os.environ.pop("RATE_LIMIT_REDIS_URL", None)
os.environ.pop("ENCRYPTION_KEY", None)

import pytest

from waitlist_api.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from waitlist_api.adapters.storage.in_memory import InMemorySnapshotStore
from waitlist_api.services.waitlist_ledger import WaitlistLedger

ADMIN_HEADERS = {"X-API-Key": "test-api-key-123"}


class FakeClock:
    """Deterministic datetime source advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def snapshot_store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def ledger(snapshot_store: InMemorySnapshotStore) -> WaitlistLedger:
    return WaitlistLedger(snapshot_store, clock=FakeClock())


@pytest.fixture
def rate_limiter() -> InMemoryFixedWindowRateLimiter:
    return InMemoryFixedWindowRateLimiter(cleanup_probability=0.0)
