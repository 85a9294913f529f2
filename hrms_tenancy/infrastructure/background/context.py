# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Per-thread component wiring for Dramatiq workers.

Dramatiq runs actors on several threads per process, and every thread
keeps its own event loop (see tasks/base.py). Async engines and Redis
pools are bound to the loop they were created on, so each worker thread
builds its own central engine, Redis client, directory client, pool
manager and provisioner on first use.
"""

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from hrms_tenancy.core.config import Settings, get_settings
from hrms_tenancy.domains.provisioning import TenantDatabaseProvisioner
from hrms_tenancy.infrastructure.cache.redis_client import RedisClient
from hrms_tenancy.infrastructure.database.connection import DatabaseServer, create_central_engine
from hrms_tenancy.infrastructure.database.pool import ConnectionPoolManager
from hrms_tenancy.infrastructure.events.outbox import OutboxDispatcher, OutboxEnqueuer
from hrms_tenancy.infrastructure.events.publisher import RedisEventPublisher
from hrms_tenancy.services.tenant_directory import TenantDirectoryClient

logger = logging.getLogger(__name__)

_thread_local = threading.local()


@asynccontextmanager
async def session_scope(
    sessionmaker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Central-database session, committed on success."""
    async with sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@dataclass
class WorkerContext:
    """Components owned by one worker thread."""

    settings: Settings
    engine: AsyncEngine
    redis: RedisClient
    directory: TenantDirectoryClient
    pool: ConnectionPoolManager
    provisioner: TenantDatabaseProvisioner
    dispatcher: OutboxDispatcher

    async def close(self) -> None:
        await self.pool.close_all()
        await self.directory.close()
        await self.redis.close()
        await self.engine.dispose()


async def build_worker_context(settings: Optional[Settings] = None) -> WorkerContext:
    """Create and connect the components of a worker thread.

    Raises:
        RedisError: If Redis cannot be reached.
    """
    settings = settings or get_settings()

    engine = create_central_engine(settings)
    sessionmaker = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

    redis = RedisClient(settings)
    await redis.connect()

    directory = TenantDirectoryClient(settings, cache=redis)
    server = DatabaseServer(engine, settings.service_name)
    pool = ConnectionPoolManager(settings, server, directory)

    def central_session() -> AsyncContextManager[AsyncSession]:
        return session_scope(sessionmaker)

    provisioner = TenantDatabaseProvisioner(
        settings,
        server,
        pool,
        directory,
        outbox=OutboxEnqueuer(),
        session_factory=central_session,
    )
    dispatcher = OutboxDispatcher(
        RedisEventPublisher(redis, settings.outbox.channel_prefix),
        central_session,
        settings,
    )
    return WorkerContext(
        settings=settings,
        engine=engine,
        redis=redis,
        directory=directory,
        pool=pool,
        provisioner=provisioner,
        dispatcher=dispatcher,
    )


async def get_worker_context() -> WorkerContext:
    """Get the WorkerContext of the current thread, building it on first use."""
    context = getattr(_thread_local, "context", None)
    if context is None:
        context = await build_worker_context()
        _thread_local.context = context
        logger.debug("Built worker context for thread %s", threading.current_thread().name)
    return context


def clear_thread_worker_context() -> None:
    """Forget the current thread's components.

    Called by run_async() when a new event loop is created for a thread;
    the old components are bound to a closed loop and are rebuilt on next
    access.
    """
    _thread_local.context = None
