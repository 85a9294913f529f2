# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pydantic models shared across layers."""

from hrms_tenancy.models.tenant import Tenant

__all__ = ["Tenant"]
