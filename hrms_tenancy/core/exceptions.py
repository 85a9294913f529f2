# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Error taxonomy for tenant routing and provisioning.

Every failure raised by the naming, pool, routing and provisioning layers
is a TenancyError subclass. Each class carries the HTTP status the router
answers with, the phase it belongs to and a client-safe message that never
contains database names or connection details.

Example:
    try:
        await pool.switch_to_tenant(tenant_id)
    except TenantNotFoundError as e:
        logger.warning("Unknown tenant: %s", e.tenant_id)
"""

from typing import Optional

ERROR_CODE = "DISTRIBUTED_DATABASE_ERROR"


class TenancyError(Exception):
    """Base exception for tenant routing and provisioning.

    Attributes:
        message: Internal, detailed error description (logged only).
        tenant_id: Tenant the failure relates to, if known.
        service: Service name the failure happened on.
        database_name: Physical database involved, if any.
        original_error: The underlying exception.
    """

    status_code = 500
    error_code = ERROR_CODE
    phase = "tenancy"
    public_message = "Tenant database error"

    def __init__(
        self,
        message: str,
        *,
        tenant_id: Optional[str] = None,
        service: Optional[str] = None,
        database_name: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Internal, detailed error description.
            tenant_id: Tenant the failure relates to.
            service: Service name the failure happened on.
            database_name: Physical database involved.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.tenant_id = tenant_id
        self.service = service
        self.database_name = database_name
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message

    def client_message(self) -> str:
        """Message safe to return to API clients."""
        return self.public_message

    def log_context(self) -> dict[str, Optional[str]]:
        """Fields attached to log records for this error."""
        return {
            "phase": self.phase,
            "tenant_id": self.tenant_id,
            "service": self.service,
            "database_name": self.database_name,
        }


class InvalidArgumentError(TenancyError, ValueError):
    """Raised on programmer errors such as an empty tenant id."""

    phase = "naming"
    public_message = "Invalid tenant database arguments"


class TenantIdentifierMissingError(TenancyError):
    """Raised when a request carries no tenant identifier at all."""

    status_code = 400
    phase = "identify"
    public_message = "Tenant identifier is required"


class TenantNotFoundError(TenancyError):
    """Raised when the identity authority does not know the tenant."""

    status_code = 404
    phase = "resolve"
    public_message = "Tenant not found"


class TenantInactiveError(TenancyError):
    """Raised when the tenant exists but is deactivated."""

    status_code = 403
    phase = "resolve"
    public_message = "Tenant is inactive"


class DatabaseMissingError(TenancyError):
    """Raised when the tenant is not provisioned on this service."""

    status_code = 404
    phase = "verify_database"
    public_message = "Tenant database not found"

    def client_message(self) -> str:
        """Service-specific message, the tenant may exist elsewhere."""
        if self.service:
            return f"Tenant database not found on {self.service} service"
        return self.public_message


class ConnectionFailedError(TenancyError):
    """Raised when a database connection cannot be opened or probed."""

    phase = "connect"
    public_message = "Database connection failed"


class VerificationMismatchError(TenancyError):
    """Raised when a connection reports a different database than expected.

    Attributes:
        expected: Database name the connection was configured for.
        actual: Database name reported by current_database().
    """

    phase = "verify_connection"
    public_message = "Database connection verification failed"

    def __init__(
        self,
        message: str,
        *,
        expected: str,
        actual: Optional[str],
        **kwargs: object,
    ) -> None:
        super().__init__(message, database_name=expected, **kwargs)  # type: ignore[arg-type]
        self.expected = expected
        self.actual = actual


class ProvisioningError(TenancyError):
    """Base exception for tenant database provisioning failures.

    Attributes:
        step: Provisioning step that failed.
    """

    phase = "provision"
    public_message = "Tenant database provisioning failed"

    def __init__(self, message: str, *, step: Optional[str] = None, **kwargs: object) -> None:
        super().__init__(message, **kwargs)  # type: ignore[arg-type]
        self.step = step


class MigrationFailedError(ProvisioningError):
    """Raised when the schema migration set cannot be applied."""

    phase = "migrate"


class SeedFailedError(ProvisioningError):
    """Seed data could not be applied. Logged, never propagated."""

    phase = "seed"


class RecordFailedError(ProvisioningError):
    """Tenant row could not be written. Logged, never propagated."""

    phase = "record"


class ProvisioningTimeoutError(ProvisioningError):
    """Raised when provisioning exceeds its deadline."""

    phase = "timeout"


class ProvisioningRollbackFailedError(ProvisioningError):
    """Rollback of a failed attempt did not complete.

    Logged as critical; the error that triggered the rollback is the one
    that propagates.
    """

    phase = "rollback"
