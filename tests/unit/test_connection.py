# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for central database helpers.

PostgreSQL-specific statements are exercised against SQLite only to check
that driver failures surface as ConnectionFailedError.
"""

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from hrms_tenancy.core.exceptions import ConnectionFailedError
from hrms_tenancy.infrastructure.database.connection import (
    DatabaseError,
    DatabaseServer,
    check_central_database_connection,
    fetch_current_database,
    get_central_engine,
    get_central_session,
    probe,
)


class TestProbe:
    @pytest.mark.asyncio
    async def test_live_engine(self, sqlite_engine):
        assert await probe(sqlite_engine)

    @pytest.mark.asyncio
    async def test_unreachable_engine(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/missing/db.sqlite")
        try:
            assert not await probe(engine)
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_failed_identity_query(self, sqlite_engine):
        with pytest.raises(ConnectionFailedError):
            await fetch_current_database(sqlite_engine)


class TestUninitialized:
    def test_engine_requires_init(self):
        with pytest.raises(DatabaseError):
            get_central_engine()

    @pytest.mark.asyncio
    async def test_session_requires_init(self):
        with pytest.raises(DatabaseError):
            async with get_central_session():
                pass

    @pytest.mark.asyncio
    async def test_connection_check_is_false(self):
        assert not await check_central_database_connection()


class TestDatabaseServer:
    @pytest.mark.asyncio
    async def test_metadata_failure_is_connection_failure(self, sqlite_engine):
        server = DatabaseServer(sqlite_engine, "employee")

        with pytest.raises(ConnectionFailedError) as exc_info:
            await server.database_exists("tenant_x_employee")

        assert exc_info.value.service == "employee"
        assert exc_info.value.database_name == "tenant_x_employee"
