"""
HTTP Application Factory

All resource routes are mounted under the configured prefix (default /api).
The caller's identity comes from the X-User-Id header set by the upstream
authentication layer.

The app lifespan starts the recurring-rule scheduler when it is enabled
and stops it on shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ledger import __version__
from ledger.api.middleware import ResponseCacheMiddleware
from ledger.api.responses import envelope, register_exception_handlers
from ledger.api.routes import budgets, recurring, transactions, wallets
from ledger.audit import configure_logging
from ledger.config import Settings, get_settings
from ledger.orchestrator import LedgerComponents, create_app_components


logger = structlog.get_logger(__name__)


def create_app(
    components: Optional[LedgerComponents] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        components: Pre-built components (tests inject their own)
        settings: Settings used when components are built here
    """
    if components is None:
        settings = settings or get_settings()
        components = create_app_components(settings)
    settings = components.settings
    app_settings = settings.app

    configure_logging(app_settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.scheduler.enabled:
            components.scheduler.start()
        yield
        await components.scheduler.stop()

    app = FastAPI(
        title="Wallet Ledger",
        version=__version__,
        debug=app_settings.debug_mode,
        lifespan=lifespan,
    )
    app.state.components = components

    app.add_middleware(
        ResponseCacheMiddleware,
        cache=components.cache,
        prefix=app_settings.api_prefix,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    for module in (wallets, transactions, budgets, recurring):
        app.include_router(module.router, prefix=app_settings.api_prefix)

    @app.get("/health")
    async def health():
        return envelope({"version": __version__, "environment": app_settings.app_environment})

    logger.info(
        "app_created",
        environment=app_settings.app_environment,
        api_prefix=app_settings.api_prefix,
    )
    return app
