# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant database provisioning domain package.

This package provides:
- Idempotent creation of a tenant database with migrations and seed data
- Rollback of half-built databases on fatal failures
- Operator-driven removal of tenant databases
"""

from hrms_tenancy.domains.provisioning.service import (
    FATAL_STEPS,
    ProvisioningAttempt,
    ProvisioningResult,
    ProvisioningStep,
    TenantDatabaseProvisioner,
)

__all__ = [
    "FATAL_STEPS",
    "ProvisioningAttempt",
    "ProvisioningResult",
    "ProvisioningStep",
    "TenantDatabaseProvisioner",
]
