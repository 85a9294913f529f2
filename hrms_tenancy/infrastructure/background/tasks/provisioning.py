# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant database provisioning tasks.

When a tenant is created on one service, every other service provisions
its own database for that tenant by running this actor in its workers.
"""

import logging
from typing import Any

import dramatiq

from hrms_tenancy.infrastructure.background.broker import Priority, Queues, setup_dramatiq
from hrms_tenancy.infrastructure.background.context import get_worker_context
from hrms_tenancy.infrastructure.background.tasks.base import run_async
from hrms_tenancy.models.tenant import Tenant

# Setup broker before defining actors
setup_dramatiq()

logger = logging.getLogger(__name__)


@dramatiq.actor(
    queue_name=Queues.PROVISIONING,
    max_retries=3,
    min_backoff=30000,  # 30 seconds
    time_limit=600000,  # 10 minutes
    priority=Priority.CRITICAL,
)
def provision_tenant_database(tenant: dict[str, Any]) -> dict[str, Any]:
    """Provision this service's database for a tenant.

    Idempotent: a database that already exists is left untouched, so
    redelivered messages are harmless. Fatal failures are raised so
    Dramatiq retries the message after the rollback has run.

    Args:
        tenant: Tenant data as published in tenant.created.

    Returns:
        The provisioning result.
    """

    async def _provision() -> dict[str, Any]:
        model = Tenant.model_validate(tenant)
        context = await get_worker_context()
        result = await context.provisioner.create_tenant_database(model, announce=False)
        logger.info(
            "Tenant %s provisioned on %s (created=%s)",
            model.id,
            context.provisioner.service_name,
            result.created,
        )
        return result.to_dict()

    return run_async(_provision())


def get_provisioning_actors() -> list:
    """Get all provisioning actors."""
    return [
        provision_tenant_database,
    ]
