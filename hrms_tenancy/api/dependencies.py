# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""FastAPI dependency injection definitions.

This module owns the process-wide tenancy components and provides
dependency functions for FastAPI endpoints:
- Get the tenant context resolved by the tenant database middleware
- Get a session bound to the tenant's database
- Get the pool manager, directory client and provisioner

Example:
    @router.get("/employees")
    async def list_employees(
        db: AsyncSession = Depends(get_tenant_session),
        tenant: TenantRequestContext = Depends(get_tenant_context),
    ):
        ...
"""

import logging
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from hrms_tenancy.api.middleware.tenant_database import (
    TenantRequestContext,
    get_tenant_context_from_request,
)
from hrms_tenancy.core.config import Settings, get_settings
from hrms_tenancy.domains.provisioning import TenantDatabaseProvisioner
from hrms_tenancy.infrastructure.cache import (
    RedisClient,
    RedisError,
    close_redis,
    get_redis,
    init_redis,
)
from hrms_tenancy.infrastructure.database import (
    ConnectionPoolManager,
    DatabaseServer,
    close_central_database,
    init_central_database,
)
from hrms_tenancy.infrastructure.database.migrations.runner import run_central_migrations
from hrms_tenancy.infrastructure.events import OutboxEnqueuer
from hrms_tenancy.services import TenantDirectoryClient

logger = logging.getLogger(__name__)

# Component singletons, created in the application lifespan
_directory: TenantDirectoryClient | None = None
_pool: ConnectionPoolManager | None = None
_provisioner: TenantDatabaseProvisioner | None = None


async def init_components(settings: Optional[Settings] = None) -> None:
    """Initialize the central database, Redis and the tenancy components.

    Redis is optional: without it the directory client runs uncached and
    the circuit breaker keeps its state in process.
    """
    global _directory, _pool, _provisioner
    settings = settings or get_settings()

    engine = await init_central_database(settings)
    if settings.service_db.migrate_on_startup:
        applied = await run_central_migrations(engine)
        if applied:
            logger.info("Applied central migrations: %s", ", ".join(applied))

    try:
        cache = await init_redis(settings)
    except RedisError as e:
        logger.warning("Redis unavailable, tenant lookups will not be cached: %s", str(e))
        cache = None

    _directory = TenantDirectoryClient(settings, cache=cache)
    server = DatabaseServer(engine, settings.service_name)
    _pool = ConnectionPoolManager(settings, server, _directory)

    outbox = OutboxEnqueuer() if settings.provisioning.announce_created else None
    _provisioner = TenantDatabaseProvisioner(
        settings, server, _pool, _directory, outbox=outbox
    )
    logger.info("Tenancy components initialized for service %s", settings.service_name)


async def close_components() -> None:
    """Dispose tenant engines and close every connection."""
    global _directory, _pool, _provisioner

    if _pool is not None:
        await _pool.close_all()
        _pool = None

    if _directory is not None:
        await _directory.close()
        _directory = None

    _provisioner = None
    await close_redis()
    await close_central_database()


def get_pool_manager() -> ConnectionPoolManager:
    """Get the connection pool manager.

    Raises:
        RuntimeError: If components have not been initialized.
    """
    if _pool is None:
        raise RuntimeError("Pool manager not initialized. Call init_components() first.")
    return _pool


def get_directory() -> TenantDirectoryClient:
    """Get the tenant directory client.

    Raises:
        RuntimeError: If components have not been initialized.
    """
    if _directory is None:
        raise RuntimeError("Directory client not initialized. Call init_components() first.")
    return _directory


def get_provisioner() -> TenantDatabaseProvisioner:
    """Get the tenant database provisioner.

    Raises:
        RuntimeError: If components have not been initialized.
    """
    if _provisioner is None:
        raise RuntimeError("Provisioner not initialized. Call init_components() first.")
    return _provisioner


def get_optional_redis() -> Optional[RedisClient]:
    """Get the Redis client, or None when Redis was unavailable at startup."""
    try:
        return get_redis()
    except RedisError:
        return None


def get_tenant_context(request: Request) -> TenantRequestContext:
    """Get the tenant context of the request.

    Raises:
        HTTPException: If the request was not routed to a tenant database.
    """
    context = get_tenant_context_from_request(request)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant context required",
        )
    return context


async def get_tenant_session(
    context: Annotated[TenantRequestContext, Depends(get_tenant_context)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get a session on the tenant database the request was routed to.

    The session is committed on success and rolled back on exception.

    Yields:
        AsyncSession bound to the tenant's engine.
    """
    async with AsyncSession(
        bind=context.connection.engine,
        expire_on_commit=False,
        autoflush=False,
    ) as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Type aliases for cleaner endpoint signatures
TenantContextDep = Annotated[TenantRequestContext, Depends(get_tenant_context)]
TenantSessionDep = Annotated[AsyncSession, Depends(get_tenant_session)]
PoolDep = Annotated[ConnectionPoolManager, Depends(get_pool_manager)]
DirectoryDep = Annotated[TenantDirectoryClient, Depends(get_directory)]
ProvisionerDep = Annotated[TenantDatabaseProvisioner, Depends(get_provisioner)]
