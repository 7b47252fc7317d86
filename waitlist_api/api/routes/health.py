from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Liveness check for load balancers.

    Reports which rate limiting backend is active so a silently degraded
    (per-process) limiter shows up in monitoring.
    """
    limiter = getattr(request.app.state, "rate_limiter", None)
    distributed = bool(getattr(limiter, "is_distributed", False))
    return {
        "status": "ok",
        "rate_limiter": "redis" if distributed else "in_memory",
    }
