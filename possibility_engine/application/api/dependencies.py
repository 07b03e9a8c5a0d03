"""
FastAPI Dependency Injection
============================

Application-level singletons (breaker registry, simulated provider, the
execution client) are created once in the lifespan and stored on
`app.state`. Routes receive them through the `*Dep` aliases below, which
keeps handlers testable: tests build an app with their own collaborators.

For test environments where the lifespan does not run (a bare TestClient),
`init_app_state` is applied lazily on first access.
"""

from typing import Annotated

import httpx
from fastapi import Depends, FastAPI, Request

from possibility_engine.core.config.constants import IN_PROCESS_BASE_URL
from possibility_engine.core.config.settings import Settings, get_settings
from possibility_engine.core.logging.logger import get_logger
from possibility_engine.core.resilience.circuit_breaker import CircuitBreakerRegistry
from possibility_engine.generation.model_catalog import ModelCatalog, default_model_catalog
from possibility_engine.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)
from possibility_engine.providers.simulated_provider import SimulatedProvider

logger = get_logger(__name__)


# ============================================================================
# APP STATE
# ============================================================================


def init_app_state(
    app: FastAPI,
    settings: Settings,
    provider: SimulatedProvider | None = None,
    catalog: ModelCatalog | None = None,
) -> None:
    """
    Populate `app.state` with the process-wide collaborators.

    The execution client points at EXECUTION_BASE_URL when configured,
    otherwise at this same application over ASGI.
    """
    state = app.state
    if getattr(state, "initialized", False):
        return

    metrics = get_metrics_collector()
    state.settings = settings
    state.metrics = metrics
    state.catalog = catalog or getattr(state, "catalog", None) or default_model_catalog()
    state.provider = (
        provider or getattr(state, "provider", None) or SimulatedProvider(catalog=state.catalog)
    )
    state.breakers = CircuitBreakerRegistry(
        failure_threshold=settings.circuit_breaker.CB_FAILURE_THRESHOLD,
        recovery_timeout=settings.circuit_breaker.CB_RECOVERY_TIMEOUT,
        on_state_change=metrics.record_breaker_state,
    )

    if settings.streaming.EXECUTION_BASE_URL:
        state.execution_client = httpx.AsyncClient(
            timeout=settings.streaming.EXECUTION_TIMEOUT
        )
        state.execution_base_url = settings.streaming.EXECUTION_BASE_URL
    else:
        state.execution_client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url=IN_PROCESS_BASE_URL,
            timeout=settings.streaming.EXECUTION_TIMEOUT,
        )
        state.execution_base_url = f"{IN_PROCESS_BASE_URL}{settings.app.API_BASE_PATH}"

    state.initialized = True
    logger.info("Application state initialized", stage="APP.1",
                execution_base_url=state.execution_base_url)


async def close_app_state(app: FastAPI) -> None:
    client: httpx.AsyncClient | None = getattr(app.state, "execution_client", None)
    if client is not None:
        await client.aclose()
    app.state.initialized = False


def _state(request: Request):
    app = request.app
    if not getattr(app.state, "initialized", False):
        init_app_state(app, getattr(app.state, "settings", None) or get_settings())
    return app.state


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_app_settings(request: Request) -> Settings:
    return _state(request).settings


def get_breaker_registry(request: Request) -> CircuitBreakerRegistry:
    """Process-wide breakers: failure history outlives individual requests."""
    return _state(request).breakers


def get_provider(request: Request) -> SimulatedProvider:
    return _state(request).provider


def get_catalog(request: Request) -> ModelCatalog:
    return _state(request).catalog


def get_metrics(request: Request) -> MetricsCollector:
    return _state(request).metrics


def get_execution_client(request: Request) -> httpx.AsyncClient:
    return _state(request).execution_client


def get_execution_base_url(request: Request) -> str:
    return _state(request).execution_base_url


# ============================================================================
# TYPE ALIASES
# ============================================================================

SettingsDep = Annotated[Settings, Depends(get_app_settings)]
BreakersDep = Annotated[CircuitBreakerRegistry, Depends(get_breaker_registry)]
ProviderDep = Annotated[SimulatedProvider, Depends(get_provider)]
CatalogDep = Annotated[ModelCatalog, Depends(get_catalog)]
MetricsDep = Annotated[MetricsCollector, Depends(get_metrics)]
ExecutionClientDep = Annotated[httpx.AsyncClient, Depends(get_execution_client)]
ExecutionBaseUrlDep = Annotated[str, Depends(get_execution_base_url)]
