# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI Application Factory.

This module provides the application factory for an HRMS service that
routes each request to the calling tenant's database.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from hrms_tenancy.api.dependencies import (
    close_components,
    get_directory,
    get_optional_redis,
    get_pool_manager,
    init_components,
)
from hrms_tenancy.api.middleware import TenantDatabaseMiddleware
from hrms_tenancy.api.routes import health
from hrms_tenancy.core.config import Settings, get_settings
from hrms_tenancy.infrastructure.background import setup_dramatiq, shutdown_dramatiq
from hrms_tenancy.infrastructure.events import TenantEventBridge
from hrms_tenancy.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Initializes and cleans up:
    - Central database and tenancy components
    - Redis cache
    - Dramatiq broker
    - Tenant event bridge

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    settings: Settings = app.state.settings
    logger.info(
        "Starting %s",
        settings.app_name,
        extra={"environment": settings.environment, "service": settings.service_name},
    )

    # =========================================================================
    # Startup
    # =========================================================================

    try:
        await init_components(settings)
    except Exception as e:
        logger.warning("Failed to initialize tenancy components: %s", str(e))

    try:
        setup_dramatiq(settings)
        logger.info("Dramatiq broker initialized")
    except Exception as e:
        logger.warning("Failed to setup Dramatiq: %s", str(e))

    bridge: Optional[TenantEventBridge] = None
    redis = get_optional_redis()
    if settings.outbox.bridge_enabled and redis is not None:
        bridge = TenantEventBridge(redis, settings)
        await bridge.start()

    yield

    # =========================================================================
    # Shutdown
    # =========================================================================
    logger.info("Shutting down %s", settings.app_name)

    if bridge is not None:
        await bridge.stop()

    try:
        shutdown_dramatiq()
    except Exception as e:
        logger.warning("Failed to shutdown Dramatiq: %s", str(e))

    try:
        await close_components()
        logger.info("Tenancy components closed")
    except Exception as e:
        logger.warning("Error closing tenancy components: %s", str(e))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings; loaded from the environment when None.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Tenant-routed HRMS service",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    # =========================================================================
    # State
    # =========================================================================
    app.state.settings = settings

    # =========================================================================
    # Middleware (order matters - last added is first executed)
    # =========================================================================

    # Tenant database middleware - routes each request to its tenant database
    app.add_middleware(
        TenantDatabaseMiddleware,
        get_pool=get_pool_manager,
        get_directory=get_directory,
        settings=settings,
    )

    # =========================================================================
    # Routes
    # =========================================================================
    app.include_router(health.router, tags=["Health"])

    return app
