"""
Admin Routes
============

Operational endpoints:
- GET  /admin/circuit-breakers        per-provider breaker statistics
- POST /admin/circuit-breakers/reset  close every breaker
- GET  /admin/metrics                 Prometheus text format for scraping
"""

from fastapi import APIRouter, Response, status

from possibility_engine.application.api.dependencies import BreakersDep, MetricsDep
from possibility_engine.application.api.models import CircuitBreakerResponse, CircuitBreakerStats
from possibility_engine.core.logging.logger import get_logger

router = APIRouter(prefix="/admin", tags=["Admin"])
logger = get_logger(__name__)


# ============================================================================
# CIRCUIT BREAKER ENDPOINTS
# ============================================================================


@router.get(
    "/circuit-breakers",
    response_model=CircuitBreakerResponse,
    status_code=status.HTTP_200_OK,
)
async def get_circuit_breaker_statistics(breakers: BreakersDep):
    """
    Breaker state and counters for every provider seen by this process.

    Breakers are created on first use, so a provider never targeted since
    startup does not appear.
    """
    stats = {
        name: CircuitBreakerStats(**values) for name, values in breakers.get_all_stats().items()
    }
    logger.debug("Circuit breaker statistics served", stage="API.4", breakers=len(stats))
    return CircuitBreakerResponse(
        circuit_breakers=stats, unhealthy=breakers.get_unhealthy_breakers()
    )


@router.post("/circuit-breakers/reset", status_code=status.HTTP_200_OK)
async def reset_circuit_breakers(breakers: BreakersDep):
    names = breakers.names
    breakers.reset_all()
    logger.warning("Circuit breakers reset by admin", stage="API.4", breakers=names)
    return {"reset": names}


# ============================================================================
# METRICS ENDPOINTS
# ============================================================================


@router.get("/metrics")
async def get_prometheus_metrics(metrics: MetricsDep):
    """
    Expose metrics in Prometheus text format.

    Returned through `Response` so the body is raw text with Prometheus'
    content type rather than a JSON-encoded string.
    """
    return Response(content=metrics.export(), media_type=metrics.get_content_type())
