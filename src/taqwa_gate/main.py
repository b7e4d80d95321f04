"""
Taqwa Gate Application Entry Point

This module defines the FastAPI application instance, registers all routers,
configures global exception handling, and provides a test-friendly application
factory.

Startup
-------
- Apply the configured log level to the `taqwa` logger tree.
- Create the `rate_window` table when the SQL store is selected.
- Start the periodic rate-window sweeper when enabled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI

from .config import settings
from .core.errors import TaqwaGateError, taqwa_error_handler, unhandled_exception_handler
from .db.sweeper import rate_limit_sweeper_task

from .api import (
    ask_routes,
    health_routes,
    quota_routes,
    reference_routes,
)
from .api.dependencies import get_rate_limiter


logger = logging.getLogger("taqwa.app")


# ---------------------------------------------------------------------
# Application Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    app = FastAPI(
        title="taqwa-gate",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # --------------------------------------------------------------
    # Global Exception Handling
    # --------------------------------------------------------------

    app.add_exception_handler(TaqwaGateError, taqwa_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # --------------------------------------------------------------
    # Router Registration
    # --------------------------------------------------------------

    app.include_router(health_routes.router)
    app.include_router(ask_routes.router)
    app.include_router(quota_routes.router)
    app.include_router(reference_routes.router)

    sweeper: Optional[asyncio.Task] = None

    # --------------------------------------------------------------
    # Startup Hook
    # --------------------------------------------------------------

    @app.on_event("startup")
    async def _startup() -> None:
        nonlocal sweeper
        logging.getLogger("taqwa").setLevel(settings.log_level.upper())
        logger.info("Starting taqwa-gate (rate limit store: %s)", settings.rate_limit_store)

        if settings.rate_limit_store == "sql":
            from .db.session import init_models
            await init_models()

        if settings.rate_limit_sweep_enabled:
            sweeper = asyncio.create_task(rate_limit_sweeper_task(get_rate_limiter()))

    # --------------------------------------------------------------
    # Shutdown Hook
    # --------------------------------------------------------------

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        logger.info("Shutting down taqwa-gate")
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass

    return app


# ---------------------------------------------------------------------
# Default Application Instance (for Uvicorn/Gunicorn)
# ---------------------------------------------------------------------

app = create_app()
