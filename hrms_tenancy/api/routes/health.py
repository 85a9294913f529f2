# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Health check endpoints.

This module provides health, liveness, readiness and database routing
endpoints for the service. None of them are tenant-routed.
"""

import logging
import time
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hrms_tenancy.api.dependencies import get_directory, get_optional_redis, get_pool_manager
from hrms_tenancy.core.config import get_settings
from hrms_tenancy.infrastructure.background import get_broker_manager
from hrms_tenancy.infrastructure.database import get_central_engine, probe
from hrms_tenancy.infrastructure.database.connection import DatabaseError
from hrms_tenancy.utils.datetime import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()


class ComponentHealth(BaseModel):
    """Individual component health status."""
    status: str = Field(description="Component status")
    latency_ms: float | None = Field(None, description="Response latency in ms")
    message: str | None = Field(None, description="Additional status message")


class ComponentsHealth(BaseModel):
    """All components health status."""
    database: ComponentHealth | None = None
    redis: ComponentHealth | None = None


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(description="Overall health status")
    timestamp: datetime = Field(description="Current server timestamp")
    service: str = Field(description="Service this process serves")
    environment: str = Field(description="Deployment environment")
    uptime_seconds: int = Field(description="Server uptime in seconds")
    components: ComponentsHealth = Field(default_factory=ComponentsHealth)


class ReadinessResponse(BaseModel):
    """Readiness check response model."""
    ready: bool = Field(description="Whether the service is ready")
    checks: dict[str, Any] = Field(description="Individual check results")


async def check_database() -> ComponentHealth:
    """Check the central database connection."""
    try:
        engine = get_central_engine()
    except DatabaseError as e:
        return ComponentHealth(status="unhealthy", message=str(e))

    start = time.time()
    if not await probe(engine):
        logger.error("Central database health check failed")
        return ComponentHealth(status="unhealthy", message="Central database unreachable")

    latency = (time.time() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


async def check_redis() -> ComponentHealth:
    """Check the Redis connection."""
    client = get_optional_redis()
    if client is None:
        return ComponentHealth(status="unhealthy", message="Redis not initialized")

    start = time.time()
    if not await client.ping():
        logger.error("Redis health check failed")
        return ComponentHealth(status="unhealthy", message="Redis unreachable")

    latency = (time.time() - start) * 1000
    return ComponentHealth(status="healthy", latency_ms=round(latency, 2))


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Check if the service is healthy with component details.

    Returns:
        HealthResponse with detailed status.
    """
    settings = getattr(request.app.state, "settings", None) or get_settings()

    db_health = await check_database()
    redis_health = await check_redis()

    # Redis only degrades the service: lookups fall back to the authority
    if db_health.status != "healthy":
        overall = "unhealthy"
    elif redis_health.status != "healthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        timestamp=utc_now(),
        service=settings.service_name,
        environment=settings.environment,
        uptime_seconds=int(time.time() - _server_start_time),
        components=ComponentsHealth(database=db_health, redis=redis_health),
    )


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Liveness probe: the process is up."""
    return {"status": "alive"}


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check() -> JSONResponse:
    """Readiness probe: central database and Redis are reachable.

    Pending background messages are reported but do not affect readiness.
    """
    db_health = await check_database()
    redis_health = await check_redis()

    ready = db_health.status == "healthy" and redis_health.status == "healthy"
    body = ReadinessResponse(
        ready=ready,
        checks={
            "database": db_health.model_dump(exclude_none=True),
            "redis": redis_health.model_dump(exclude_none=True),
            "queues": get_broker_manager().get_queue_stats(),
        },
    )
    return JSONResponse(
        status_code=200 if ready else 503,
        content=body.model_dump(),
    )


@router.get("/health/database")
async def database_routing_check() -> JSONResponse:
    """Active connection details, pool size and directory breaker state.

    Never raises: an unreachable connection is reported in the body.
    """
    try:
        pool = get_pool_manager()
        directory = get_directory()
    except RuntimeError as e:
        return JSONResponse(status_code=503, content={"status": "unavailable", "error": str(e)})

    info = await pool.current_connection_info()
    breaker = await directory.circuit_breaker_status()

    return JSONResponse(
        status_code=200 if info.ok else 503,
        content={
            "status": "healthy" if info.ok else "unhealthy",
            "connection": info.to_dict(),
            "directory_circuit_breaker": breaker.to_dict(),
        },
    )
