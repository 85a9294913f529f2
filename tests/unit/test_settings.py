# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for application settings."""

import pytest
from pydantic import SecretStr, ValidationError

from hrms_tenancy.core.config import (
    DirectorySettings,
    ServiceDatabaseSettings,
    Settings,
    TenancySettings,
    clear_settings_cache,
    get_settings,
)


class TestServiceName:
    def test_derived_from_app_name(self):
        settings = Settings(app_name="core-service", tenancy=TenancySettings(service_name=None))
        assert settings.service_name == "core"

    def test_explicit_service_name_wins(self):
        settings = Settings(
            app_name="core-service", tenancy=TenancySettings(service_name="employee")
        )
        assert settings.service_name == "employee"

    def test_unknown_app_defaults_to_identity(self):
        settings = Settings(app_name="something", tenancy=TenancySettings(service_name=None))
        assert settings.service_name == "identity"


class TestDefaults:
    def test_directory_defaults(self):
        directory = DirectorySettings()
        assert directory.cache_ttl == 300
        assert directory.fallback_ttl == 3600
        assert directory.breaker_threshold == 5
        assert directory.breaker_cooldown == 60
        assert directory.timeout == 5.0

    def test_tenancy_defaults(self):
        tenancy = TenancySettings()
        assert tenancy.max_connections == 10
        assert tenancy.idle_max_age_seconds == 1800
        assert {"www", "api", "admin", "app", "localhost"} <= tenancy.reserved_subdomains
        assert "/health" in tenancy.public_paths


class TestServiceDatabaseSettings:
    def test_url_for_keeps_hyphenated_names(self):
        db = ServiceDatabaseSettings(password=SecretStr("secret"))
        url = db.url_for("tenant_1111-2222_employee")
        assert url.database == "tenant_1111-2222_employee"
        assert url.password == "secret"
        assert url.drivername == "postgresql+asyncpg"

    def test_connect_args_include_timeout(self):
        db = ServiceDatabaseSettings(connect_timeout=12, ssl="require")
        assert db.connect_args == {"timeout": 12, "ssl": "require"}


class TestProductionValidation:
    def test_rejects_debug_in_production(self):
        with pytest.raises(ValidationError):
            Settings(
                environment="production",
                debug=True,
                directory=DirectorySettings(internal_secret=SecretStr("real-secret")),
            )

    def test_rejects_default_secret_in_production(self):
        with pytest.raises(ValidationError):
            Settings(environment="production")

    def test_accepts_configured_production(self):
        settings = Settings(
            environment="production",
            directory=DirectorySettings(internal_secret=SecretStr("real-secret")),
        )
        assert settings.is_production


def test_get_settings_is_cached():
    clear_settings_cache()
    assert get_settings() is get_settings()
    clear_settings_cache()
