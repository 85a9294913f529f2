# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Models stored inside every tenant database."""

from hrms_tenancy.infrastructure.database.models.tenant.setting import TenantSetting
from hrms_tenancy.infrastructure.database.models.tenant.tenant import TenantRecord

__all__ = ["TenantRecord", "TenantSetting"]
