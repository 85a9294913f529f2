# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models, split by database scope."""

from hrms_tenancy.infrastructure.database.models.base import CentralBase, TenantBase

__all__ = ["CentralBase", "TenantBase"]
