# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for tenant migrations, seed data and the tenant record.

Runs against an in-memory SQLite database standing in for a freshly
created tenant database.
"""

import pytest
import pytest_asyncio
from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from hrms_tenancy.infrastructure.database.migrations.runner import (
    MIGRATIONS,
    MigrationError,
    get_migration_status,
    run_central_migrations,
    run_migrations,
    run_tenant_migrations,
)
from hrms_tenancy.infrastructure.database.models.tenant import TenantRecord, TenantSetting
from hrms_tenancy.infrastructure.database.seeds import seed_tenant_database
from hrms_tenancy.infrastructure.database.seeds.tenant import EMPLOYEE_SETTINGS, IDENTITY_SETTINGS
from hrms_tenancy.infrastructure.database.tenant_records import record_tenant
from hrms_tenancy.models.tenant import Tenant

TENANT = Tenant(
    id="11111111-1111-1111-1111-111111111111",
    name="Acme",
    domain="acme.example.com",
    settings={"locale": "en"},
)
DATABASE = "tenant_11111111-1111-1111-1111-111111111111_employee"


@pytest_asyncio.fixture
async def migrated(sqlite_engine):
    await run_tenant_migrations(sqlite_engine)
    return sqlite_engine


async def count_settings(engine) -> int:
    async with async_sessionmaker(bind=engine)() as session:
        return await session.scalar(select(func.count()).select_from(TenantSetting))


class TestMigrations:
    @pytest.mark.asyncio
    async def test_applies_all_tenant_migrations(self, sqlite_engine):
        applied = await run_tenant_migrations(sqlite_engine)
        assert applied == MIGRATIONS["tenant"]

    @pytest.mark.asyncio
    async def test_second_run_applies_nothing(self, sqlite_engine):
        await run_tenant_migrations(sqlite_engine)
        assert await run_tenant_migrations(sqlite_engine) == []

    @pytest.mark.asyncio
    async def test_target_revision(self, sqlite_engine):
        applied = await run_migrations(
            sqlite_engine, "tenant", target_revision="001_create_tenants_table"
        )
        assert applied == ["001_create_tenants_table"]

        status = await get_migration_status(sqlite_engine, "tenant")
        assert status["current_version"] == "001_create_tenants_table"
        assert status["pending_migrations"] == ["002_create_tenant_settings"]
        assert not status["is_up_to_date"]

    @pytest.mark.asyncio
    async def test_status_when_up_to_date(self, migrated):
        status = await get_migration_status(migrated, "tenant")
        assert status["is_up_to_date"]
        assert status["latest_version"] == "002_create_tenant_settings"

    @pytest.mark.asyncio
    async def test_central_migrations_create_outbox(self, sqlite_engine):
        assert await run_central_migrations(sqlite_engine) == MIGRATIONS["central"]

        async with sqlite_engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        assert "events_outbox" in tables

    @pytest.mark.asyncio
    async def test_missing_module(self, sqlite_engine, monkeypatch):
        monkeypatch.setitem(MIGRATIONS, "tenant", ["999_does_not_exist"])
        with pytest.raises(MigrationError):
            await run_tenant_migrations(sqlite_engine)


class TestSeeds:
    @pytest.mark.asyncio
    async def test_seeds_service_defaults(self, migrated):
        created = await seed_tenant_database(migrated, "employee")

        assert created == len(EMPLOYEE_SETTINGS)
        assert await count_settings(migrated) == len(EMPLOYEE_SETTINGS)

    @pytest.mark.asyncio
    async def test_seeding_is_idempotent(self, migrated):
        await seed_tenant_database(migrated, "employee")
        assert await seed_tenant_database(migrated, "employee") == 0

    @pytest.mark.asyncio
    async def test_unknown_service_uses_identity_seeds(self, migrated):
        assert await seed_tenant_database(migrated, "payroll") == len(IDENTITY_SETTINGS)


class TestTenantRecord:
    @pytest.mark.asyncio
    async def test_writes_record_once(self, migrated):
        assert await record_tenant(migrated, TENANT, DATABASE)
        assert not await record_tenant(migrated, TENANT, DATABASE)

        async with async_sessionmaker(bind=migrated)() as session:
            record = await session.get(TenantRecord, TENANT.id)

        assert record.database_name == DATABASE
        assert record.domain == "acme.example.com"
        assert record.settings == {"locale": "en"}
