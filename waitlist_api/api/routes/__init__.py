from __future__ import annotations

from waitlist_api.api.routes.health import router as health_router
from waitlist_api.api.routes.waitlist import router as waitlist_router

__all__ = ["health_router", "waitlist_router"]
