# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration for the tenant database
provisioning and routing engine. Settings are loaded from environment
variables with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from hrms_tenancy.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.tenancy.service_name)
    'identity'
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

from hrms_tenancy.core.naming import detect_service_name

DEFAULT_INTERNAL_SECRET = "change-this-internal-secret"


class ServiceDatabaseSettings(BaseSettings):
    """Database server owned by the current service.

    Every tenant database of this service lives on the same server as the
    service's central database; only the database name differs.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Central (non-tenant) database name.
        connection_name: Registry name of the central connection.
        driver: SQLAlchemy driver name.
        pool_size: Central engine pool size.
        max_overflow: Central engine overflow connections.
        tenant_pool_size: Pool size of each tenant engine.
        connect_timeout: Seconds to wait when opening a connection.
        ssl: Optional asyncpg ssl mode (disable, prefer, require, ...).
        migrate_on_startup: Apply pending central migrations when the service starts.
    """

    model_config = SettingsConfigDict(
        env_prefix="SERVICE_DB_",
        extra="ignore",
    )

    user: str = "hrms"
    password: SecretStr = SecretStr("hrms_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "hrms"
    connection_name: str = "pgsql"
    driver: str = "postgresql+asyncpg"
    pool_size: int = 10
    max_overflow: int = 20
    tenant_pool_size: int = 5
    connect_timeout: int = 30
    ssl: str | None = None
    migrate_on_startup: bool = True

    def url_for(self, database: str) -> URL:
        """Build a connection URL for any database on this server.

        Database names may contain hyphens, so the URL is assembled by
        SQLAlchemy rather than by string formatting.
        """
        return URL.create(
            self.driver,
            username=self.user,
            password=self.password.get_secret_value(),
            host=self.host,
            port=self.port,
            database=database,
        )

    @property
    def url(self) -> URL:
        """Build the central database URL."""
        return self.url_for(self.database)

    @property
    def connect_args(self) -> dict[str, object]:
        """Driver-level connect arguments shared by all engines."""
        args: dict[str, object] = {"timeout": self.connect_timeout}
        if self.ssl:
            args["ssl"] = self.ssl
        return args


class TenancySettings(BaseSettings):
    """Tenant routing and pool configuration.

    Attributes:
        service_name: Short service name (identity, employee, core).
            Derived from APP_NAME when unset.
        max_connections: Soft ceiling on pooled tenant connections.
        idle_max_age_seconds: Pool entries idle longer than this are evicted.
        purge_on_release: Dispose released tenant entries on switch to central.
        reserved_subdomains: Host labels never treated as tenant domains.
        public_paths: Paths that bypass tenant routing.
    """

    model_config = SettingsConfigDict(
        env_prefix="TENANCY_",
        extra="ignore",
    )

    service_name: str | None = None
    max_connections: int = 10
    idle_max_age_seconds: int = 1800
    purge_on_release: bool = True
    reserved_subdomains: frozenset[str] = frozenset(
        {"www", "api", "admin", "app", "localhost"}
    )
    public_paths: frozenset[str] = frozenset(
        {
            "/",
            "/health",
            "/health/ready",
            "/health/live",
            "/health/database",
            "/docs",
            "/redoc",
            "/openapi.json",
        }
    )


class DirectorySettings(BaseSettings):
    """Identity authority client configuration.

    Attributes:
        base_url: Base URL of the identity service internal API.
        internal_secret: Shared secret sent as X-Internal-Service-Secret.
        timeout: Per-request timeout in seconds.
        retries: Extra attempts on transport errors.
        retry_backoff: Seconds to sleep between attempts.
        cache_ttl: Primary cache TTL in seconds.
        fallback_ttl: Fallback cache TTL in seconds.
        breaker_threshold: Failures before the circuit opens.
        breaker_cooldown: Seconds the circuit stays open.
    """

    model_config = SettingsConfigDict(
        env_prefix="TENANT_DIRECTORY_",
        extra="ignore",
    )

    base_url: str = "http://identity-service:8000/api/v1/internal"
    internal_secret: SecretStr = SecretStr(DEFAULT_INTERNAL_SECRET)
    timeout: float = 5.0
    retries: int = 2
    retry_backoff: float = 0.1
    cache_ttl: int = 300
    fallback_ttl: int = 3600
    breaker_threshold: int = 5
    breaker_cooldown: int = 60


class ProvisioningSettings(BaseSettings):
    """Tenant database provisioning configuration.

    Attributes:
        timeout_seconds: Overall deadline of one provisioning attempt.
        use_advisory_lock: Guard creation with a PostgreSQL advisory lock.
        run_seeders: Apply default seed data after migrations.
        announce_created: Enqueue tenant.created in the central outbox.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROVISIONING_",
        extra="ignore",
    )

    timeout_seconds: float = 300.0
    use_advisory_lock: bool = True
    run_seeders: bool = True
    announce_created: bool = True


class OutboxSettings(BaseSettings):
    """Transactional outbox dispatch configuration.

    Attributes:
        batch_size: Rows claimed per dispatch run.
        retry_delay_seconds: Delay before a failed row is retried.
        max_attempts: Attempts before a row stays failed.
        channel_prefix: Prefix of the Redis channels events are published on.
        bridge_enabled: Forward tenant.created from other services to workers.
    """

    model_config = SettingsConfigDict(
        env_prefix="OUTBOX_",
        extra="ignore",
    )

    batch_size: int = 50
    retry_delay_seconds: int = 5
    max_attempts: int = 10
    channel_prefix: str = "hrms.events"
    bridge_enabled: bool = True


class RedisSettings(BaseSettings):
    """Redis configuration for the tenant cache and breaker state.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr | None = None
    database: int = 0
    max_connections: int = 50

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        if self.password is None:
            return f"redis://{self.host}:{self.port}/{self.database}"
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment.
        debug: Enable debug mode.
        log_level: Logging level.
        app_name: Deployed service name, e.g. employee-service.
        service_db: Database server of this service.
        tenancy: Routing and pool settings.
        directory: Identity authority client settings.
        provisioning: Provisioning settings.
        outbox: Outbox dispatch settings.
        redis: Redis settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    app_name: str = "identity-service"

    service_db: ServiceDatabaseSettings = Field(default_factory=ServiceDatabaseSettings)
    tenancy: TenancySettings = Field(default_factory=TenancySettings)
    directory: DirectorySettings = Field(default_factory=DirectorySettings)
    provisioning: ProvisioningSettings = Field(default_factory=ProvisioningSettings)
    outbox: OutboxSettings = Field(default_factory=OutboxSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with insecure defaults.
        """
        if self.environment == "production":
            if self.debug:
                raise ValueError("Debug mode must be disabled in production.")
            secret = self.directory.internal_secret.get_secret_value()
            if secret == DEFAULT_INTERNAL_SECRET:
                raise ValueError(
                    "Internal service secret must be changed from default in production. "
                    "Set TENANT_DIRECTORY_INTERNAL_SECRET environment variable."
                )
        return self

    @property
    def service_name(self) -> str:
        """Short name of the service this process serves."""
        return self.tenancy.service_name or detect_service_name(self.app_name)

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
