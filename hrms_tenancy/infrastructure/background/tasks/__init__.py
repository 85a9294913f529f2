# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task actors.

- Outbox: publishing pending events of the central outbox
- Provisioning: creating this service's database for a new tenant

Usage:
    from hrms_tenancy.infrastructure.background.tasks import provision_tenant_database

    provision_tenant_database.send(tenant.model_dump())

Running Workers:
    dramatiq hrms_tenancy.infrastructure.background.tasks --processes 2 --threads 4
"""

from hrms_tenancy.infrastructure.background.tasks.outbox import (
    dispatch_outbox,
    get_outbox_actors,
)
from hrms_tenancy.infrastructure.background.tasks.provisioning import (
    get_provisioning_actors,
    provision_tenant_database,
)


def get_all_actors() -> list:
    """Get all actors for worker registration."""
    return [
        *get_outbox_actors(),
        *get_provisioning_actors(),
    ]


__all__ = [
    "dispatch_outbox",
    "provision_tenant_database",
    "get_all_actors",
]
