# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Central database connection and server administration.

Each service owns one PostgreSQL server. The central (non-tenant) database
on that server is the default connection of the process, and it is also
the administrative connection used to create, drop and inspect tenant
databases.

Uses SQLAlchemy 2.0 async API with asyncpg driver.

Example:
    from hrms_tenancy.infrastructure.database.connection import (
        DatabaseServer,
        get_central_engine,
        init_central_database,
    )

    await init_central_database(settings)
    server = DatabaseServer(get_central_engine())
    if not await server.database_exists("tenant_..._employee"):
        await server.create_database("tenant_..._employee")
"""

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from hrms_tenancy.core.exceptions import ConnectionFailedError
from hrms_tenancy.core.naming import quote_identifier

if TYPE_CHECKING:
    from hrms_tenancy.core.config.settings import Settings

logger = logging.getLogger(__name__)

# Module-level state for the central database connection
_central_engine: Optional[AsyncEngine] = None
_central_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class DatabaseError(Exception):
    """Base exception for central database lifecycle failures.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


def create_central_engine(settings: "Settings") -> AsyncEngine:
    """Build an engine for the central database without registering it.

    Used directly by worker threads, which keep one engine per event loop.
    """
    db = settings.service_db
    return create_async_engine(
        db.url,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        connect_args=db.connect_args,
        echo=settings.debug,
    )


async def init_central_database(settings: "Settings") -> AsyncEngine:
    """Initialize the central database connection pool.

    Called once at application startup.

    Args:
        settings: Application settings containing database configuration.

    Returns:
        The central engine.

    Raises:
        DatabaseError: If connection pool creation fails.
    """
    global _central_engine, _central_sessionmaker

    try:
        _central_engine = create_central_engine(settings)

        _central_sessionmaker = async_sessionmaker(
            bind=_central_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to initialize central database connection", e) from e

    return _central_engine


async def close_central_database() -> None:
    """Dispose the central database connection pool."""
    global _central_engine, _central_sessionmaker

    if _central_engine is not None:
        await _central_engine.dispose()
        _central_engine = None
        _central_sessionmaker = None


def get_central_engine() -> AsyncEngine:
    """Get the central database async engine.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _central_engine is None:
        raise DatabaseError(
            "Central database not initialized. Call init_central_database() first."
        )
    return _central_engine


@asynccontextmanager
async def get_central_session() -> AsyncIterator[AsyncSession]:
    """Get an async session for the central database.

    The session is committed on success and rolled back on exception.

    Raises:
        DatabaseError: If the database has not been initialized or
            if a database operation fails.

    Example:
        async with get_central_session() as session:
            await enqueuer.enqueue(session, ...)
    """
    if _central_sessionmaker is None:
        raise DatabaseError(
            "Central database not initialized. Call init_central_database() first."
        )

    async with _central_sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Database operation failed", e) from e
        except Exception:
            await session.rollback()
            raise


async def check_central_database_connection() -> bool:
    """Check if the central database is reachable."""
    if _central_engine is None:
        return False
    return await probe(_central_engine)


async def probe(engine: AsyncEngine) -> bool:
    """Run a cheap liveness query against an engine.

    Returns:
        True if ``SELECT 1`` succeeds, False otherwise.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.debug("Liveness probe failed: %s", e)
        return False


async def fetch_current_database(engine: AsyncEngine) -> str:
    """Return the database name an engine is actually connected to.

    Raises:
        ConnectionFailedError: If the query cannot be executed.
    """
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT current_database()"))
            return result.scalar_one()
    except (SQLAlchemyError, OSError) as e:
        raise ConnectionFailedError(
            "Failed to read current database", original_error=e
        ) from e


class DatabaseServer:
    """Administrative operations on the service's PostgreSQL server.

    DDL statements (CREATE/DROP DATABASE) cannot run inside a transaction,
    so they go through an AUTOCOMMIT view of the central engine.

    Attributes:
        engine: The central engine this server is reached through.
        service_name: Service owning the server, used for error context.
    """

    def __init__(self, engine: AsyncEngine, service_name: Optional[str] = None) -> None:
        self.engine = engine
        self.service_name = service_name
        self._admin_engine = engine.execution_options(isolation_level="AUTOCOMMIT")

    def _failure(self, message: str, database_name: str, error: Exception) -> ConnectionFailedError:
        return ConnectionFailedError(
            message,
            service=self.service_name,
            database_name=database_name,
            original_error=error,
        )

    async def database_exists(self, database_name: str) -> bool:
        """Check pg_database for a database.

        Raises:
            ConnectionFailedError: If the metadata query fails.
        """
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"),
                    {"name": database_name},
                )
                return result.scalar() is not None
        except (SQLAlchemyError, OSError) as e:
            raise self._failure("Failed to check database existence", database_name, e) from e

    async def create_database(self, database_name: str) -> None:
        """Create a database with a quoted name.

        Raises:
            ConnectionFailedError: If the statement fails.
        """
        statement = f"CREATE DATABASE {quote_identifier(database_name)}"
        try:
            async with self._admin_engine.connect() as conn:
                await conn.execute(text(statement))
        except (SQLAlchemyError, OSError) as e:
            raise self._failure("Failed to create database", database_name, e) from e
        logger.info("Created database %s", database_name)

    async def drop_database(self, database_name: str) -> None:
        """Drop a database if it exists.

        Raises:
            ConnectionFailedError: If the statement fails.
        """
        statement = f"DROP DATABASE IF EXISTS {quote_identifier(database_name)}"
        try:
            async with self._admin_engine.connect() as conn:
                await conn.execute(text(statement))
        except (SQLAlchemyError, OSError) as e:
            raise self._failure("Failed to drop database", database_name, e) from e
        logger.info("Dropped database %s", database_name)

    async def terminate_connections(self, database_name: str) -> int:
        """Forcibly disconnect every other session on a database.

        Returns:
            Number of backends terminated.

        Raises:
            ConnectionFailedError: If the statement fails.
        """
        try:
            async with self._admin_engine.connect() as conn:
                result = await conn.execute(
                    text(
                        "SELECT pg_terminate_backend(pg_stat_activity.pid) "
                        "FROM pg_stat_activity "
                        "WHERE datname = :name AND pid <> pg_backend_pid()"
                    ),
                    {"name": database_name},
                )
                terminated = sum(1 for row in result if row[0])
        except (SQLAlchemyError, OSError) as e:
            raise self._failure("Failed to terminate connections", database_name, e) from e

        if terminated:
            logger.info("Terminated %d connections to %s", terminated, database_name)
        return terminated

    async def current_database(self) -> str:
        """Name of the central database as reported by the server."""
        return await fetch_current_database(self.engine)

    @asynccontextmanager
    async def advisory_lock(self, key: str) -> AsyncIterator[None]:
        """Hold a session-level PostgreSQL advisory lock for the block.

        Serializes work across processes that share the server, e.g. two
        workers provisioning the same tenant.
        """
        conn = self._admin_engine.connect()
        try:
            await conn.start()
            await conn.execute(text("SELECT pg_advisory_lock(hashtext(:key))"), {"key": key})
        except (SQLAlchemyError, OSError) as e:
            await conn.close()
            raise self._failure("Failed to acquire advisory lock", key, e) from e

        try:
            yield
        finally:
            try:
                await conn.execute(
                    text("SELECT pg_advisory_unlock(hashtext(:key))"), {"key": key}
                )
            except (SQLAlchemyError, OSError) as e:
                logger.warning("Failed to release advisory lock %s: %s", key, e)
            finally:
                await conn.close()
