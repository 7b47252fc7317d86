"""Application factory for the waitlist API.

Builds the ledger, rate limiter and app wiring from settings. Tests pass
their own ledger/limiter to avoid touching disk or Redis.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from waitlist_api.adapters.rate_limit.base import AbstractRateLimiter
from waitlist_api.adapters.rate_limit.factory import create_rate_limiter
from waitlist_api.adapters.storage.json_file import JsonFileSnapshotStore
from waitlist_api.api.routes import health_router, waitlist_router
from waitlist_api.core.config import Settings, settings
from waitlist_api.core.encryption import EncryptionCodec
from waitlist_api.core.exception_handlers import setup_exception_handlers
from waitlist_api.core.logging import configure_logging
from waitlist_api.core.middleware import request_id_middleware
from waitlist_api.core.openapi import apply_openapi_customizations
from waitlist_api.services.waitlist_ledger import WaitlistLedger

logger = logging.getLogger(__name__)


def build_ledger(config: Settings) -> WaitlistLedger:
    """Ledger backed by the encrypted JSON snapshot at WAITLIST_STORAGE_PATH."""
    codec = EncryptionCodec(config.security.encryption_key, production=config.is_production)
    if not codec.is_enabled:
        logger.warning(
            "encryption.disabled",
            extra={"reason": "encryption_key_missing_or_invalid", "app_env": config.app_env},
        )
    store = JsonFileSnapshotStore(config.waitlist.resolved_storage_path(), codec)
    return WaitlistLedger(store, position_baseline=config.waitlist.position_baseline)


def create_app(
    *,
    ledger: WaitlistLedger | None = None,
    rate_limiter: AbstractRateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        ledger: Ledger to serve; built from settings when omitted.
        rate_limiter: Limiter to enforce presets with; built from settings
            when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Waitlist API",
        description=(
            "Pre-launch waitlist with referral-based queue jumping. Stores "
            "entries in an encrypted JSON snapshot and rate limits public "
            "routes per client IP. Admin routes require X-API-Key."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    app.state.ledger = ledger if ledger is not None else build_ledger(settings)
    app.state.rate_limiter = (
        rate_limiter
        if rate_limiter is not None
        else create_rate_limiter(settings.rate_limit, production=settings.is_production)
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(waitlist_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, admin paths)
    apply_openapi_customizations(app)

    return app
