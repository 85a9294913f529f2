# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""API middleware package."""

from hrms_tenancy.api.middleware.tenant_database import (
    TenantDatabaseMiddleware,
    TenantRequestContext,
    get_tenant_context_from_request,
)

__all__ = [
    "TenantDatabaseMiddleware",
    "TenantRequestContext",
    "get_tenant_context_from_request",
]
