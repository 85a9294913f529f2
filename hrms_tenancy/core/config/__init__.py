# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for the tenancy engine.

Example:
    >>> from hrms_tenancy.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from hrms_tenancy.core.config.settings import (
    DirectorySettings,
    OutboxSettings,
    ProvisioningSettings,
    RedisSettings,
    ServiceDatabaseSettings,
    Settings,
    TenancySettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "ServiceDatabaseSettings",
    "TenancySettings",
    "DirectorySettings",
    "ProvisioningSettings",
    "OutboxSettings",
    "RedisSettings",
]
