# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant database seed data.

Each service seeds its own default settings into a freshly migrated tenant
database:
- identity: password and session policy
- employee: employee numbering and probation defaults
- core: working calendar defaults

Seeding is idempotent: settings already present are left untouched.
"""

import logging
from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from hrms_tenancy.infrastructure.database.models.tenant import TenantSetting

logger = logging.getLogger(__name__)

SettingSeed = tuple[str, str, Any]

IDENTITY_SETTINGS: list[SettingSeed] = [
    ("password", "min_length", 12),
    ("password", "require_mixed_case", True),
    ("password", "expiry_days", 90),
    ("session", "idle_timeout_minutes", 30),
    ("session", "max_concurrent_sessions", 5),
    ("security", "max_failed_logins", 5),
]

EMPLOYEE_SETTINGS: list[SettingSeed] = [
    ("employee", "code_prefix", "EMP"),
    ("employee", "code_padding", 5),
    ("employee", "probation_period_days", 90),
    ("employee", "notice_period_days", 30),
]

CORE_SETTINGS: list[SettingSeed] = [
    ("calendar", "working_days", ["mon", "tue", "wed", "thu", "fri"]),
    ("calendar", "timezone", "UTC"),
    ("calendar", "week_start", "mon"),
    ("leave", "year_start_month", 1),
]


async def seed_settings(session: AsyncSession, seeds: list[SettingSeed]) -> list[TenantSetting]:
    """Insert settings that are not present yet.

    Args:
        session: Database session.
        seeds: (section, key, value) triples.

    Returns:
        List of created settings.
    """
    result = await session.execute(select(TenantSetting.section, TenantSetting.key))
    existing = {(row.section, row.key) for row in result}

    created = []
    for section, key, value in seeds:
        if (section, key) in existing:
            continue
        setting = TenantSetting(section=section, key=key, value=value)
        session.add(setting)
        created.append(setting)

    await session.flush()
    logger.info("Seeded %d tenant settings", len(created))
    return created


async def seed_identity(session: AsyncSession) -> list[TenantSetting]:
    return await seed_settings(session, IDENTITY_SETTINGS)


async def seed_employee(session: AsyncSession) -> list[TenantSetting]:
    return await seed_settings(session, EMPLOYEE_SETTINGS)


async def seed_core(session: AsyncSession) -> list[TenantSetting]:
    return await seed_settings(session, CORE_SETTINGS)


SERVICE_SEEDERS: dict[str, Callable[[AsyncSession], Awaitable[list[TenantSetting]]]] = {
    "identity": seed_identity,
    "employee": seed_employee,
    "core": seed_core,
}


async def seed_tenant_database(engine: AsyncEngine, service_name: str) -> int:
    """Seed a tenant database with the defaults of a service.

    Unknown services use the identity seed set.

    Args:
        engine: Engine bound to the tenant database.
        service_name: Short service name.

    Returns:
        Number of rows created.
    """
    seeder = SERVICE_SEEDERS.get(service_name, seed_identity)
    logger.info("Seeding tenant database for %s service...", service_name)

    sessionmaker = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with sessionmaker() as session:
        created = await seeder(session)
        await session.commit()

    logger.info("Tenant database seeding complete")
    return len(created)
