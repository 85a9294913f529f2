# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for component lifecycle and FastAPI dependency functions."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from sqlalchemy import inspect

from hrms_tenancy.api import dependencies
from hrms_tenancy.domains.provisioning import TenantDatabaseProvisioner
from hrms_tenancy.infrastructure.cache import RedisError
from hrms_tenancy.infrastructure.database import ConnectionPoolManager
from hrms_tenancy.services import TenantDirectoryClient


@pytest.fixture
def components(monkeypatch, sqlite_engine):
    """Route init_components to SQLite and an unreachable Redis."""

    async def init_central_database(settings):
        return sqlite_engine

    async def init_redis(settings):
        raise RedisError("Failed to connect to Redis")

    monkeypatch.setattr(dependencies, "init_central_database", init_central_database)
    monkeypatch.setattr(dependencies, "init_redis", init_redis)
    monkeypatch.setattr(dependencies, "_directory", None)
    monkeypatch.setattr(dependencies, "_pool", None)
    monkeypatch.setattr(dependencies, "_provisioner", None)
    return sqlite_engine


class TestUninitialized:
    @pytest.mark.parametrize(
        "getter",
        [dependencies.get_pool_manager, dependencies.get_directory, dependencies.get_provisioner],
    )
    def test_getters_raise(self, monkeypatch, getter):
        monkeypatch.setattr(dependencies, "_directory", None)
        monkeypatch.setattr(dependencies, "_pool", None)
        monkeypatch.setattr(dependencies, "_provisioner", None)

        with pytest.raises(RuntimeError, match="init_components"):
            getter()

    def test_optional_redis_is_none(self, monkeypatch):
        def get_redis():
            raise RedisError("Redis not initialized")

        monkeypatch.setattr(dependencies, "get_redis", get_redis)
        assert dependencies.get_optional_redis() is None


class TestInitComponents:
    @pytest.mark.asyncio
    async def test_builds_components_without_redis(self, components, settings):
        await dependencies.init_components(settings)
        try:
            assert isinstance(dependencies.get_pool_manager(), ConnectionPoolManager)
            assert isinstance(dependencies.get_directory(), TenantDirectoryClient)
            assert isinstance(dependencies.get_provisioner(), TenantDatabaseProvisioner)
        finally:
            await dependencies.close_components()

        with pytest.raises(RuntimeError):
            dependencies.get_provisioner()

    @pytest.mark.asyncio
    async def test_applies_central_migrations(self, components, settings):
        await dependencies.init_components(settings)
        await dependencies.close_components()

        async with components.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        assert "events_outbox" in tables

    @pytest.mark.asyncio
    async def test_central_migrations_can_be_skipped(self, components, settings):
        settings.service_db.migrate_on_startup = False

        await dependencies.init_components(settings)
        await dependencies.close_components()

        async with components.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        assert "events_outbox" not in tables


class TestTenantContext:
    def test_missing_context_is_bad_request(self):
        request = MagicMock()
        request.state = SimpleNamespace()

        with pytest.raises(HTTPException) as exc_info:
            dependencies.get_tenant_context(request)

        assert exc_info.value.status_code == 400
