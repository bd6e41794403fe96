"""FastAPI application entry-point for the Babylon Fin billing API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from babylon_core.licensing import InvalidTransitionError
from babylon_core.state.sqlite_adapter import create_local_tables
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from babylon_api import __version__
from babylon_api.config import APISettings, PlatformEnv, load_api_settings
from babylon_api.dependencies import ADMIN_TOKEN_HEADER, dispose_engine, init_engine
from babylon_api.errors import BillingError, error_response
from babylon_api.middleware.logging import RequestLoggingMiddleware
from babylon_api.routers import asaas, health, licenses, plans, settings
from babylon_api.services.webhook_reconciler import WEBHOOK_TOKEN_HEADER

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Configure structured logging when enabled.
    - Initialise the async database engine.
    - Create tables in dev or local SQLite mode.

    On shutdown:
    - Dispose the database engine connection pool.
    """
    api_settings: APISettings = load_api_settings()

    if api_settings.structured_logging:
        from babylon_api.middleware.json_formatter import configure_json_logging

        configure_json_logging()
        logger.info("Structured JSON logging enabled")

    engine = init_engine(api_settings)
    is_local = api_settings.database_url.startswith("sqlite")
    logger.info("Database engine initialised (%s)", "local" if is_local else "postgres")

    if api_settings.platform_env == PlatformEnv.DEV or is_local:
        await create_local_tables(engine)

    if api_settings.platform_env == PlatformEnv.PRODUCTION and not api_settings.webhook_auth_required:
        logger.warning("Webhook authentication is disabled in production")

    yield

    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Construct and configure the FastAPI application."""
    api_settings = load_api_settings()

    app = FastAPI(
        title="Babylon Fin Billing API",
        description="Asaas subscriptions, payment reconciliation and license state.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (outermost first) ----------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_settings.cors_origins,
        allow_credentials=api_settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Correlation-ID",
            ADMIN_TOKEN_HEADER,
            WEBHOOK_TOKEN_HEADER,
            "Accept",
        ],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api")
    app.include_router(asaas.router, prefix="/api")
    app.include_router(plans.router, prefix="/api")
    app.include_router(licenses.router, prefix="/api")
    app.include_router(settings.router, prefix="/api")

    app.include_router(health.readiness_router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        return error_response(exc)

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        logger.warning("Invalid transition on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=409, content={"error": str(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal database error"})

    return app


# Module-level application instance used by ``uvicorn babylon_api.main:app``.
app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    import uvicorn

    api_settings = load_api_settings()
    uvicorn.run("babylon_api.main:app", host=api_settings.host, port=api_settings.port, reload=api_settings.debug)
