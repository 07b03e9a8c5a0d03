#!/usr/bin/env python3
"""
FastAPI Application Entry Point

Configures the possibility engine's HTTP surface: the execution endpoint,
the aggregate stream, health and admin routes.

Author: System Architect
Date: 2025-12-12
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from possibility_engine.application.api.dependencies import close_app_state, init_app_state
from possibility_engine.application.api.routes.admin import router as admin_router
from possibility_engine.application.api.routes.health import router as health_router
from possibility_engine.application.api.routes.possibility import router as possibility_router
from possibility_engine.core.config.constants import HEADER_REQUEST_ID
from possibility_engine.core.config.settings import Settings, get_settings
from possibility_engine.core.exceptions import ErrorType, PossibilityEngineError
from possibility_engine.core.logging.logger import (
    clear_request_id,
    get_logger,
    set_request_id,
    setup_logging,
)
from possibility_engine.generation.model_catalog import ModelCatalog
from possibility_engine.providers.simulated_provider import SimulatedProvider

logger = get_logger(__name__)

_STATUS_BY_ERROR_TYPE = {
    ErrorType.VALIDATION: 400,
    ErrorType.AUTHENTICATION: 401,
    ErrorType.RATE_LIMIT: 429,
    ErrorType.CIRCUIT_OPEN: 503,
    ErrorType.TIMEOUT: 504,
}


# ============================================================================
# Application Lifespan
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle (startup and shutdown).
    """
    settings: Settings = app.state.settings

    setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

    logger.info(
        "Starting Possibility Engine",
        environment=settings.app.ENVIRONMENT,
        version=settings.app.APP_VERSION,
    )

    try:
        init_app_state(app, settings)
        logger.info("Application startup complete")

        yield

    finally:
        logger.info("Shutting down application")
        await close_app_state(app)
        logger.info("Application shutdown complete")


# ============================================================================
# Application Factory
# ============================================================================


def create_app(
    settings: Settings | None = None,
    provider: SimulatedProvider | None = None,
    catalog: ModelCatalog | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings override (default: process settings)
        provider: Execution backend for `POST /possibility/{id}`
        catalog: Model catalog shared by the provider and sessions

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Concurrent multi-provider possibility generation engine",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    if catalog is not None:
        app.state.catalog = catalog
    if provider is not None:
        app.state.provider = provider

    # Engine routes carry the API base path; operational routes stay at the root
    app.include_router(possibility_router, prefix=settings.app.API_BASE_PATH)
    app.include_router(health_router)
    app.include_router(admin_router)

    # ========================================================================
    # Middleware
    # ========================================================================

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """
        Inject request ID into all requests for correlation.
        """
        request_id = request.headers.get(HEADER_REQUEST_ID) or str(uuid.uuid4())
        set_request_id(request_id)

        try:
            response = await call_next(request)
            response.headers[HEADER_REQUEST_ID] = request_id
            return response

        finally:
            clear_request_id()

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    @app.exception_handler(PossibilityEngineError)
    async def engine_exception_handler(request: Request, exc: PossibilityEngineError):
        """Map engine errors to a status code and their structured body."""
        status_code = _STATUS_BY_ERROR_TYPE.get(exc.error_type, 500)
        logger.error(
            f"Engine exception: {exc.message}",
            error_type=exc.error_type.value,
            request_id=exc.request_id,
            status_code=status_code,
        )
        return JSONResponse(
            status_code=status_code,
            content=exc.to_dict(),
            headers={HEADER_REQUEST_ID: exc.request_id or ""},
        )

    # ========================================================================
    # Root Endpoint
    # ========================================================================

    @app.get("/", tags=["Root"])
    async def root():
        """
        Root endpoint with API information.
        """
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "docs": "/docs",
            "health": "/health",
            "api": settings.app.API_BASE_PATH,
        }

    return app


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "possibility_engine.application.app:create_app",
        factory=True,
        host=settings.app.API_HOST,
        port=settings.app.API_PORT,
        reload=settings.app.ENVIRONMENT == "development",
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
