# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Settings for a service under test
- In-memory fakes for the PostgreSQL server, tenant engines, the tenant
  directory and Redis
- aiosqlite engines for ORM-level tests
"""

import os

# Set test environment before imports
os.environ["DRAMATIQ_TEST_MODE"] = "true"
os.environ["ENVIRONMENT"] = "test"

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hrms_tenancy.core.config import Settings, TenancySettings, clear_settings_cache
from hrms_tenancy.core.exceptions import ConnectionFailedError
from hrms_tenancy.infrastructure.cache.redis_client import RedisError
from hrms_tenancy.infrastructure.database import pool as pool_module
from hrms_tenancy.infrastructure.database.models import CentralBase
from hrms_tenancy.infrastructure.database.models.central import OutboxEvent  # noqa: F401
from hrms_tenancy.infrastructure.database.pool import ConnectionPoolManager
from hrms_tenancy.models.tenant import Tenant
from hrms_tenancy.services.circuit_breaker import CircuitBreakerStatus

TENANT_ID = "11111111-1111-1111-1111-111111111111"
OTHER_TENANT_ID = "22222222-2222-2222-2222-222222222222"
INACTIVE_TENANT_ID = "33333333-3333-3333-3333-333333333333"
SERVICE = "employee"


# =============================================================================
# Fakes
# =============================================================================


class FakeEngine:
    """Stands in for an AsyncEngine bound to one database.

    Attributes:
        database_name: Database the engine was built for.
        alive: Whether probes succeed.
        reports: Database name reported by current_database(), if different.
        disposed: Whether dispose() was called.
    """

    def __init__(self, database_name: str) -> None:
        self.database_name = database_name
        self.alive = True
        self.reports: Optional[str] = None
        self.disposed = False

    async def dispose(self) -> None:
        self.disposed = True


class FakeEngineFactory:
    """Engine factory recording every engine it builds."""

    def __init__(self) -> None:
        self.engines: list[FakeEngine] = []
        self.unreachable: set[str] = set()
        self.mismatched: dict[str, str] = {}

    def __call__(self, url: Any, **kwargs: Any) -> FakeEngine:
        engine = FakeEngine(url.database)
        engine.alive = url.database not in self.unreachable
        engine.reports = self.mismatched.get(url.database)
        self.engines.append(engine)
        return engine

    def built_for(self, database_name: str) -> list[FakeEngine]:
        return [e for e in self.engines if e.database_name == database_name]


class FakeDatabaseServer:
    """In-memory PostgreSQL server with scriptable failures."""

    def __init__(self, service_name: str = SERVICE) -> None:
        self.engine = FakeEngine("hrms")
        self.service_name = service_name
        self.databases: set[str] = set()
        self.created: list[str] = []
        self.dropped: list[str] = []
        self.terminated: list[str] = []
        self.advisory_keys: list[str] = []
        self.fail_create: Optional[Exception] = None
        self.fail_drop: Optional[Exception] = None
        self.fail_terminate: Optional[Exception] = None

    async def database_exists(self, database_name: str) -> bool:
        return database_name in self.databases

    async def create_database(self, database_name: str) -> None:
        if self.fail_create is not None:
            raise self.fail_create
        self.databases.add(database_name)
        self.created.append(database_name)

    async def drop_database(self, database_name: str) -> None:
        if self.fail_drop is not None:
            raise self.fail_drop
        self.databases.discard(database_name)
        self.dropped.append(database_name)

    async def terminate_connections(self, database_name: str) -> int:
        if self.fail_terminate is not None:
            raise self.fail_terminate
        self.terminated.append(database_name)
        return 0

    async def current_database(self) -> str:
        return self.engine.database_name

    @asynccontextmanager
    async def advisory_lock(self, key: str) -> AsyncIterator[None]:
        self.advisory_keys.append(key)
        yield


class FakeDirectory:
    """Tenant directory backed by a dict."""

    def __init__(self, *tenants: Tenant) -> None:
        self.tenants = {tenant.id: tenant for tenant in tenants}
        self.remembered: list[str] = []
        self.invalidated: list[str] = []
        self.identifiers: list[str] = []

    async def resolve(self, identifier: str) -> Optional[Tenant]:
        self.identifiers.append(identifier)
        if identifier in self.tenants:
            return self.tenants[identifier]
        for tenant in self.tenants.values():
            if tenant.domain and tenant.domain.lower() == identifier.lower():
                return tenant
        return None

    async def remember(self, tenant: Tenant) -> None:
        self.remembered.append(tenant.id)

    async def invalidate(self, tenant_id: str, domain: Optional[str] = None) -> None:
        self.invalidated.append(tenant_id)

    async def circuit_breaker_status(self) -> CircuitBreakerStatus:
        return CircuitBreakerStatus(
            name="tenant_directory",
            state="closed",
            is_open=False,
            failure_count=0,
            threshold=5,
            cooldown_seconds=60,
            opened_at=None,
        )

    async def close(self) -> None:
        pass


class FakeRedis:
    """Dict-backed stand-in for RedisClient."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, Optional[int]] = {}
        self.published: list[tuple[str, Any]] = []
        self.broken = False

    def _check(self) -> None:
        if self.broken:
            raise RedisError("Redis unavailable")

    async def get(self, key: str) -> Any:
        self._check()
        return self.data.get(key)

    async def set(self, key: str, value: Any, expire_seconds: Optional[int] = None) -> None:
        self._check()
        self.data[key] = value
        self.ttls[key] = expire_seconds

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def publish(self, channel: str, message: Any) -> int:
        self._check()
        self.published.append((channel, message))
        return 1

    async def ping(self) -> bool:
        return not self.broken


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings of the employee service, with short deadlines."""
    clear_settings_cache()
    settings = Settings(
        environment="test",
        app_name="employee-service",
        tenancy=TenancySettings(service_name=SERVICE, max_connections=10),
    )
    settings.provisioning.timeout_seconds = 5.0
    return settings


# =============================================================================
# Tenant Fixtures
# =============================================================================


@pytest.fixture
def tenant() -> Tenant:
    return Tenant(id=TENANT_ID, name="Acme", domain="acme.example.com", is_active=True)


@pytest.fixture
def other_tenant() -> Tenant:
    return Tenant(id=OTHER_TENANT_ID, name="Globex", domain="globex.example.com")


@pytest.fixture
def inactive_tenant() -> Tenant:
    return Tenant(id=INACTIVE_TENANT_ID, name="Initech", domain="initech.example.com", is_active=False)


# =============================================================================
# Infrastructure Fakes
# =============================================================================


@pytest.fixture
def fake_probes(monkeypatch: pytest.MonkeyPatch) -> None:
    """Route the pool's liveness and identity probes to FakeEngine state."""

    async def probe(engine: FakeEngine) -> bool:
        return engine.alive

    async def fetch_current_database(engine: FakeEngine) -> str:
        if not engine.alive:
            raise ConnectionFailedError("Failed to read current database")
        return engine.reports or engine.database_name

    monkeypatch.setattr(pool_module, "probe", probe)
    monkeypatch.setattr(pool_module, "fetch_current_database", fetch_current_database)


@pytest.fixture
def server() -> FakeDatabaseServer:
    return FakeDatabaseServer()


@pytest.fixture
def engine_factory() -> FakeEngineFactory:
    return FakeEngineFactory()


@pytest.fixture
def directory(tenant: Tenant, other_tenant: Tenant, inactive_tenant: Tenant) -> FakeDirectory:
    return FakeDirectory(tenant, other_tenant, inactive_tenant)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def pool(
    settings: Settings,
    server: FakeDatabaseServer,
    directory: FakeDirectory,
    engine_factory: FakeEngineFactory,
    fake_probes: None,
) -> ConnectionPoolManager:
    """Pool manager over the fake server, directory and engines."""
    return ConnectionPoolManager(
        settings,
        server,  # type: ignore[arg-type]
        directory,  # type: ignore[arg-type]
        engine_factory=engine_factory,
    )


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncIterator[AsyncEngine]:
    """Empty in-memory SQLite database shared by every connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def central_sessions(sqlite_engine: AsyncEngine) -> Callable[[], Any]:
    """Session factory over a SQLite central database with its tables created.

    Sessions commit on success and roll back on error, like
    get_central_session().
    """
    async with sqlite_engine.begin() as conn:
        await conn.run_sync(CentralBase.metadata.create_all)

    sessionmaker = async_sessionmaker(bind=sqlite_engine, expire_on_commit=False)

    @asynccontextmanager
    async def factory() -> AsyncIterator[AsyncSession]:
        async with sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return factory


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
