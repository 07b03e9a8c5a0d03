"""
Health Check Routes
===================

GET /health          liveness plus a breaker summary
GET /health/live     bare liveness probe

A provider breaker that is not closed marks the service "degraded" but never
unhealthy: other providers keep serving possibilities.
"""

from datetime import datetime, timezone

from fastapi import APIRouter

from possibility_engine.application.api.dependencies import (
    BreakersDep,
    ProviderDep,
    SettingsDep,
)
from possibility_engine.application.api.models import HealthResponse

router = APIRouter(prefix="/health", tags=["Health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@router.get("", response_model=HealthResponse)
async def health_check(settings: SettingsDep, breakers: BreakersDep, provider: ProviderDep):
    """Liveness plus the state of every provider breaker seen so far."""
    unhealthy = breakers.get_unhealthy_breakers()
    return HealthResponse(
        status="degraded" if unhealthy else "healthy",
        timestamp=_now(),
        version=settings.app.APP_VERSION,
        components={
            "circuit_breakers": {
                name: stats["state"] for name, stats in breakers.get_all_stats().items()
            },
            "unhealthy_providers": unhealthy,
            "provider": await provider.health_check(),
        },
    )


@router.get("/live")
async def liveness_check():
    return {"status": "alive", "timestamp": _now()}
