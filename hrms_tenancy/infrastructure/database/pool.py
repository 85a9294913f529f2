# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant connection pool manager.

Every tenant of a service has its own physical database on the service's
PostgreSQL server. This module keeps one async engine per tenant database
in a process-wide registry, creates engines on first use, verifies them
before handing them out, and disposes of them when they go stale.

The "active connection" is held in a context variable rather than in a
process-global pointer: each request (asyncio task) sees its own active
connection, and anything that does not switch sees the central database.
Registry mutations are serialized by a pool-wide lock, and the
create-and-verify sequence for one registry key by a per-key lock, so two
concurrent first requests for one tenant produce a single engine.

Pooled entries carry a lease count. An entry held by an in-flight request
is never disposed by cleanup, even if it is idle past the age threshold.

Example:
    pool = ConnectionPoolManager(settings, server, directory)

    active = await pool.switch_to_tenant(tenant_id)
    try:
        async with pool.session() as session:
            await session.execute(...)
    finally:
        await pool.restore_central()
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from hrms_tenancy.core.exceptions import (
    ConnectionFailedError,
    DatabaseMissingError,
    TenancyError,
    TenantNotFoundError,
    VerificationMismatchError,
)
from hrms_tenancy.core.naming import is_tenant_key, physical_database_name, registry_key
from hrms_tenancy.infrastructure.database.connection import (
    DatabaseServer,
    fetch_current_database,
    probe,
)
from hrms_tenancy.utils.datetime import utc_now

if TYPE_CHECKING:
    from hrms_tenancy.core.config.settings import Settings
    from hrms_tenancy.services.tenant_directory import TenantDirectoryClient

logger = logging.getLogger(__name__)

EngineFactory = Callable[..., AsyncEngine]


@dataclass
class PooledConnection:
    """An entry in the tenant connection registry.

    Attributes:
        key: Registry key (no hyphens).
        tenant_id: Owning tenant.
        database_name: Physical database name.
        service_name: Service the database belongs to.
        engine: Async engine bound to the tenant database.
        created_at: When the engine was created.
        last_used: Last time the entry was handed out or released.
        leases: Number of holders currently using the entry.
    """

    key: str
    tenant_id: str
    database_name: str
    service_name: str
    engine: AsyncEngine
    created_at: datetime
    last_used: datetime
    leases: int = 0


@dataclass(frozen=True)
class ActiveConnection:
    """The connection queries of the current context go to."""

    key: str
    database_name: str
    engine: AsyncEngine
    tenant_id: Optional[str] = None

    @property
    def is_central(self) -> bool:
        return self.tenant_id is None


@dataclass(frozen=True)
class ConnectionInfo:
    """Introspection result for health endpoints.

    ``error`` is set, and the other connection fields are None, when the
    active connection could not be queried.
    """

    service: str
    pool_size: int
    active_connection: Optional[str] = None
    database_name: Optional[str] = None
    host: Optional[str] = None
    driver: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class ConnectionPoolManager:
    """Registry of per-tenant engines plus the context-local active connection.

    Attributes:
        service_name: Service whose tenant databases this pool serves.
    """

    def __init__(
        self,
        settings: "Settings",
        server: DatabaseServer,
        directory: "TenantDirectoryClient",
        *,
        engine_factory: EngineFactory = create_async_engine,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the pool manager.

        Args:
            settings: Application settings.
            server: Administrative access to the service's database server.
            directory: Tenant directory used to resolve tenants on switch.
            engine_factory: Callable building an AsyncEngine from a URL.
            clock: Source of timezone-aware "now".
        """
        self._settings = settings
        self._server = server
        self._directory = directory
        self._engine_factory = engine_factory
        self._clock = clock
        self.service_name = settings.service_name

        self._registry: dict[str, PooledConnection] = {}
        self._lock = asyncio.Lock()
        # Locks live only while some caller holds one
        self._key_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._active: ContextVar[Optional[ActiveConnection]] = ContextVar(
            f"active_connection_{id(self)}", default=None
        )
        self._central = ActiveConnection(
            key=settings.service_db.connection_name,
            database_name=settings.service_db.database,
            engine=server.engine,
        )

    # ========== Introspection ==========

    @property
    def central(self) -> ActiveConnection:
        return self._central

    @property
    def pool_size(self) -> int:
        return len(self._registry)

    def active_connection(self) -> ActiveConnection:
        """Connection of the current context, central when none is set."""
        return self._active.get() or self._central

    def get_entry(self, tenant_id: str) -> Optional[PooledConnection]:
        """Registry entry of a tenant on this service, if pooled."""
        return self._registry.get(registry_key(tenant_id, self.service_name))

    def entries(self) -> list[PooledConnection]:
        return list(self._registry.values())

    async def current_connection_info(self) -> ConnectionInfo:
        """Describe the active connection without raising.

        Returns:
            ConnectionInfo; ``error`` is set if the connection is unreachable.
        """
        active = self.active_connection()
        try:
            database_name = await fetch_current_database(active.engine)
        except TenancyError as e:
            return ConnectionInfo(
                service=self.service_name,
                pool_size=self.pool_size,
                error=str(e),
            )
        return ConnectionInfo(
            service=self.service_name,
            pool_size=self.pool_size,
            active_connection=active.key,
            database_name=database_name,
            host=self._settings.service_db.host,
            driver=self._settings.service_db.driver,
        )

    # ========== Switching ==========

    async def switch_to_tenant(self, tenant_id: str) -> ActiveConnection:
        """Make a tenant's database the active connection of this context.

        On failure the active connection is left as it was.

        Raises:
            TenantNotFoundError: If the directory does not know the tenant.
            DatabaseMissingError: If the database is not on this server.
            ConnectionFailedError: If the database cannot be reached.
            VerificationMismatchError: If the connection reports another database.
        """
        tenant = await self._directory.resolve(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(
                "Tenant not found", tenant_id=tenant_id, service=self.service_name
            )

        database_name = physical_database_name(tenant.id, self.service_name)
        if not await self.database_exists(database_name):
            raise DatabaseMissingError(
                "Tenant database does not exist on this server",
                tenant_id=tenant.id,
                service=self.service_name,
                database_name=database_name,
            )

        return await self.activate(tenant.id)

    async def database_exists(self, database_name: str) -> bool:
        """Metadata probe for a database on this service's server.

        Raises:
            ConnectionFailedError: If the server cannot be queried.
        """
        return await self._server.database_exists(database_name)

    async def activate(self, tenant_id: str) -> ActiveConnection:
        """Lease a tenant's entry and make it the active connection.

        Assumes the tenant is resolved and its database exists; used by
        callers that have already checked both.

        Raises:
            ConnectionFailedError: If the database cannot be reached.
            VerificationMismatchError: If the connection reports another database.
        """
        entry = await self._lease(tenant_id, physical_database_name(tenant_id, self.service_name))
        active = ActiveConnection(
            key=entry.key,
            database_name=entry.database_name,
            engine=entry.engine,
            tenant_id=entry.tenant_id,
        )

        previous = self._active.get()
        self._active.set(active)
        if previous is not None:
            await self._release_key(previous.key)

        logger.debug("Switched to tenant connection %s", entry.key)
        return active

    async def switch_to_central(self) -> None:
        """Release the tenant connection of this context and go back to central.

        Unleased tenant entries are purged when ``purge_on_release`` is set.

        Raises:
            ConnectionFailedError: If the central database is unreachable.
                The context is still reset to central.
        """
        previous = self._active.get()
        self._active.set(None)
        if previous is not None:
            await self._release_key(previous.key)

        if self._settings.tenancy.purge_on_release:
            await self._evict_idle(cutoff=None)

        if not await probe(self._central.engine):
            raise ConnectionFailedError(
                "Central database is unreachable",
                service=self.service_name,
                database_name=self._central.database_name,
            )

    async def restore_central(self, max_age: Optional[timedelta] = None) -> None:
        """Switch back to central and age out idle entries, never raising.

        Used on every exit path of a tenant-scoped operation.
        """
        try:
            await self.switch_to_central()
        except (TenancyError, SQLAlchemyError, OSError) as e:
            logger.error("Failed to restore central connection: %s", e)

        if max_age is None:
            max_age = timedelta(seconds=self._settings.tenancy.idle_max_age_seconds)
        try:
            await self.cleanup_older_than(max_age)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Pool cleanup failed: %s", e)

    @asynccontextmanager
    async def tenant_scope(self, tenant_id: str) -> AsyncIterator[ActiveConnection]:
        """Scoped acquisition of a tenant connection for background work.

        Example:
            async with pool.tenant_scope(tenant_id):
                async with pool.session() as session:
                    ...
        """
        active = await self.switch_to_tenant(tenant_id)
        try:
            yield active
        finally:
            await self.restore_central()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session on the active connection, committed on success."""
        async with AsyncSession(
            bind=self.active_connection().engine,
            expire_on_commit=False,
            autoflush=False,
        ) as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ========== Pool maintenance ==========

    async def configure_tenant_connection(self, tenant_id: str) -> PooledConnection:
        """Create (or reuse) and verify the pooled entry for a tenant.

        Does not change the active connection. The returned entry is leased
        and must be handed back with release().

        Raises:
            ConnectionFailedError: If the database cannot be reached.
            VerificationMismatchError: If the connection reports another database.
        """
        return await self._lease(tenant_id, physical_database_name(tenant_id, self.service_name))

    async def release(self, entry: PooledConnection) -> None:
        """Hand back a lease taken by configure_tenant_connection()."""
        await self._release_key(entry.key)

    async def cleanup_older_than(self, max_age: timedelta) -> int:
        """Dispose entries idle for longer than ``max_age``.

        Entries in use, including the active entry of the calling context,
        are kept regardless of age.

        Returns:
            Number of entries evicted.
        """
        return await self._evict_idle(cutoff=self._clock() - max_age)

    async def evict(self, tenant_id: str) -> bool:
        """Drop a tenant's entry regardless of leases.

        Used before dropping a database. If the entry is active in the
        calling context, the context falls back to central.

        Returns:
            True if an entry was removed.
        """
        key = registry_key(tenant_id, self.service_name)
        active = self._active.get()
        if active is not None and active.key == key:
            self._active.set(None)

        async with self._lock:
            entry = self._registry.pop(key, None)
        if entry is None:
            return False
        await self._dispose(entry)
        return True

    async def close_all(self) -> None:
        """Dispose every tenant engine. Called at shutdown."""
        async with self._lock:
            entries = list(self._registry.values())
            self._registry.clear()
        for entry in entries:
            await self._dispose(entry)

    # ========== Internals ==========

    async def _key_lock(self, key: str) -> asyncio.Lock:
        async with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._key_locks[key] = lock
            return lock

    def _is_busy(self, entry: PooledConnection, current: Optional[ActiveConnection]) -> bool:
        if entry.leases > 0:
            return True
        if current is not None and current.key == entry.key:
            return True
        lock = self._key_locks.get(entry.key)
        return lock is not None and lock.locked()

    def _create_engine(self, database_name: str) -> AsyncEngine:
        db = self._settings.service_db
        return self._engine_factory(
            db.url_for(database_name),
            pool_size=db.tenant_pool_size,
            max_overflow=db.tenant_pool_size,
            pool_pre_ping=True,
            pool_recycle=1800,
            connect_args=db.connect_args,
            echo=self._settings.debug,
        )

    async def _verify(self, engine: AsyncEngine, tenant_id: str, expected: str) -> None:
        context = {"tenant_id": tenant_id, "service": self.service_name}
        if not await probe(engine):
            raise ConnectionFailedError(
                "Tenant database is unreachable", database_name=expected, **context
            )

        try:
            actual = await fetch_current_database(engine)
        except ConnectionFailedError as e:
            raise ConnectionFailedError(
                "Failed to verify tenant database",
                database_name=expected,
                original_error=e.original_error,
                **context,
            ) from e

        if actual != expected:
            logger.critical(
                "Connection verification mismatch on %s: expected %s, connected to %s",
                self.service_name,
                expected,
                actual,
            )
            raise VerificationMismatchError(
                "Connected to an unexpected database",
                expected=expected,
                actual=actual,
                **context,
            )

    async def _lease(self, tenant_id: str, database_name: str) -> PooledConnection:
        key = registry_key(tenant_id, self.service_name)
        lock = await self._key_lock(key)

        async with lock:
            entry = self._registry.get(key)
            if entry is not None:
                if await probe(entry.engine):
                    async with self._lock:
                        entry.leases += 1
                        entry.last_used = self._clock()
                    return entry
                logger.warning("Evicting dead pooled connection %s", key)
                async with self._lock:
                    self._registry.pop(key, None)
                await self._dispose(entry)

            if self.pool_size >= self._settings.tenancy.max_connections:
                logger.warning(
                    "Tenant pool at %d entries (max %d), purging idle entries",
                    self.pool_size,
                    self._settings.tenancy.max_connections,
                )
                await self._evict_idle(cutoff=None)

            engine = self._create_engine(database_name)
            try:
                await self._verify(engine, tenant_id, database_name)
            except TenancyError:
                await engine.dispose()
                raise

            now = self._clock()
            entry = PooledConnection(
                key=key,
                tenant_id=tenant_id,
                database_name=database_name,
                service_name=self.service_name,
                engine=engine,
                created_at=now,
                last_used=now,
                leases=1,
            )
            async with self._lock:
                self._registry[key] = entry

        logger.info("Registered tenant connection %s", key)
        return entry

    async def _release_key(self, key: str) -> None:
        async with self._lock:
            entry = self._registry.get(key)
            if entry is not None and entry.leases > 0:
                entry.leases -= 1
                entry.last_used = self._clock()

    async def _evict_idle(self, cutoff: Optional[datetime]) -> int:
        current = self._active.get()
        async with self._lock:
            stale = [
                entry
                for key, entry in self._registry.items()
                if is_tenant_key(key)
                and not self._is_busy(entry, current)
                and (cutoff is None or entry.last_used < cutoff)
            ]
            for entry in stale:
                del self._registry[entry.key]

        for entry in stale:
            await self._dispose(entry)
        if stale:
            logger.debug("Evicted %d idle tenant connections", len(stale))
        return len(stale)

    async def _dispose(self, entry: PooledConnection) -> None:
        try:
            await entry.engine.dispose()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Failed to dispose engine %s: %s", entry.key, e)
