# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database seed package.

Contains the default data each service writes into a new tenant database.
"""

from hrms_tenancy.infrastructure.database.seeds.tenant import SERVICE_SEEDERS, seed_tenant_database

__all__ = ["SERVICE_SEEDERS", "seed_tenant_database"]
