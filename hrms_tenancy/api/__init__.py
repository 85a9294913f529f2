# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""HTTP surface: application factory, tenant middleware and health routes."""

from hrms_tenancy.api.app import create_app

__all__ = ["create_app"]
