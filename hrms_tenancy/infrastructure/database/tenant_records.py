# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Ownership row written into each tenant database."""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from hrms_tenancy.infrastructure.database.models.tenant import TenantRecord
from hrms_tenancy.models.tenant import Tenant

logger = logging.getLogger(__name__)


async def record_tenant(engine: AsyncEngine, tenant: Tenant, database_name: str) -> bool:
    """Insert the tenant row unless it already exists.

    Args:
        engine: Engine bound to the tenant database.
        tenant: Owning tenant.
        database_name: Physical database name.

    Returns:
        True if a row was written, False if one was already present.
    """
    sessionmaker = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with sessionmaker() as session:
        if await session.get(TenantRecord, tenant.id) is not None:
            logger.info("Tenant record already exists: %s", tenant.id)
            return False

        session.add(
            TenantRecord(
                id=tenant.id,
                name=tenant.name,
                domain=tenant.domain,
                database_name=database_name,
                is_active=tenant.is_active,
                settings=dict(tenant.settings),
            )
        )
        await session.commit()

    logger.info("Tenant record created: %s in %s", tenant.id, database_name)
    return True
