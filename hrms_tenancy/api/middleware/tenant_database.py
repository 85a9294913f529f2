# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant database routing middleware.

Routes every non-public request to the calling tenant's database on this
service and guarantees the connection is switched back afterwards.

Tenant identifier sources, first non-empty wins:
1. HRMS-Client-ID header
2. X-Tenant-Domain header
3. X-Tenant-ID header
4. tenant_id query parameter
5. tenant_id field of a JSON body
6. Subdomain of the Host header (www, api, admin, app, localhost excluded)

Per request the middleware resolves the tenant, rejects unknown or
inactive tenants, checks the tenant's database exists on this service,
switches to it, verifies the switch and stores a TenantRequestContext in
request.state. Whatever happens next (success, rejection or an exception
from the handler) the pool is restored to central and aged entries are
cleaned up before the middleware returns.

Example:
    # Request with header
    GET /api/v1/employees
    HRMS-Client-ID: 11111111-1111-1111-1111-111111111111

    # Request with subdomain
    GET https://acme.hrms.example.com/api/v1/employees
"""

import ipaddress
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from hrms_tenancy.core.config import get_settings
from hrms_tenancy.core.exceptions import (
    ConnectionFailedError,
    DatabaseMissingError,
    TenancyError,
    TenantIdentifierMissingError,
    TenantInactiveError,
    TenantNotFoundError,
    VerificationMismatchError,
)
from hrms_tenancy.core.naming import physical_database_name
from hrms_tenancy.infrastructure.database.pool import ActiveConnection, ConnectionPoolManager
from hrms_tenancy.models.tenant import Tenant
from hrms_tenancy.utils.datetime import format_iso, utc_now
from hrms_tenancy.utils.logging import bind_context, clear_context

if TYPE_CHECKING:
    from hrms_tenancy.core.config.settings import Settings
    from hrms_tenancy.services.tenant_directory import TenantDirectoryClient

logger = logging.getLogger(__name__)

CLIENT_ID_HEADER = "HRMS-Client-ID"
TENANT_DOMAIN_HEADER = "X-Tenant-Domain"
TENANT_ID_HEADER = "X-Tenant-ID"
TENANT_ID_FIELD = "tenant_id"

BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass(frozen=True)
class TenantRequestContext:
    """Tenant context resolved for a request.

    Attributes:
        tenant: Resolved tenant.
        service_name: Service handling the request.
        database_name: Physical database the request is routed to.
        connection: Connection handle bound to that database.
    """

    tenant: Tenant
    service_name: str
    database_name: str
    connection: ActiveConnection

    @property
    def tenant_id(self) -> str:
        return self.tenant.id

    def log_context(self) -> dict[str, str]:
        return {
            "tenant_id": self.tenant.id,
            "service": self.service_name,
            "database_name": self.database_name,
        }


def get_tenant_context_from_request(request: Request) -> Optional[TenantRequestContext]:
    """Get the tenant context stored by the middleware, if any."""
    return getattr(request.state, "tenant_context", None)


def error_response(error: TenancyError, service: str) -> JSONResponse:
    """Structured rejection without database names or connection details."""
    return JSONResponse(
        status_code=error.status_code,
        content={
            "success": False,
            "message": error.client_message(),
            "error_code": error.error_code,
            "phase": error.phase,
            "service": service,
            "timestamp": format_iso(utc_now()),
        },
    )


class TenantDatabaseMiddleware(BaseHTTPMiddleware):
    """Routes requests to the tenant's database on this service.

    Attributes:
        _get_pool: Callable returning the pool manager.
        _get_directory: Callable returning the tenant directory client.
    """

    def __init__(
        self,
        app: ASGIApp,
        get_pool: Callable[[], ConnectionPoolManager],
        get_directory: Callable[[], "TenantDirectoryClient"],
        settings: Optional["Settings"] = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: ASGI application.
            get_pool: Callable returning the pool manager (resolved per
                request, so components can be created in the lifespan).
            get_directory: Callable returning the directory client.
            settings: Application settings; loaded when None.
        """
        super().__init__(app)
        self._get_pool = get_pool
        self._get_directory = get_directory
        tenancy = (settings or get_settings()).tenancy
        self._reserved_subdomains = frozenset(s.lower() for s in tenancy.reserved_subdomains)
        self._public_paths = tenancy.public_paths

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Route, run the handler and always restore the central connection."""
        request.state.tenant_context = None

        if request.url.path in self._public_paths:
            return await call_next(request)

        pool = self._get_pool()
        try:
            try:
                context = await self._route(request, pool)
            except TenancyError as e:
                self._log_rejection(e)
                return error_response(e, pool.service_name)

            request.state.tenant_context = context
            bind_context(**context.log_context())

            response = await call_next(request)
            logger.debug(
                "Request processed on tenant database %s (status %d)",
                context.database_name,
                response.status_code,
            )
            return response
        finally:
            await pool.restore_central()
            clear_context()

    async def _route(self, request: Request, pool: ConnectionPoolManager) -> TenantRequestContext:
        service = pool.service_name

        identifier = await self.extract_identifier(request)
        if not identifier:
            raise TenantIdentifierMissingError("No tenant identifier in request", service=service)

        tenant = await self._get_directory().resolve(identifier)
        if tenant is None:
            raise TenantNotFoundError("Tenant not found", tenant_id=identifier, service=service)
        if not tenant.is_active:
            raise TenantInactiveError("Tenant is inactive", tenant_id=tenant.id, service=service)

        database_name = physical_database_name(tenant.id, service)
        context = {"tenant_id": tenant.id, "service": service, "database_name": database_name}

        if not await pool.database_exists(database_name):
            raise DatabaseMissingError("Tenant database not provisioned on this service", **context)

        connection = await pool.activate(tenant.id)

        info = await pool.current_connection_info()
        if not info.ok:
            raise ConnectionFailedError(
                f"Database connection failed after switch: {info.error}", **context
            )
        if info.database_name != database_name:
            logger.critical(
                "Database switch verification failed on %s: expected %s, got %s",
                service,
                database_name,
                info.database_name,
            )
            raise VerificationMismatchError(
                "Database switch verification failed",
                expected=database_name,
                actual=info.database_name,
                tenant_id=tenant.id,
                service=service,
            )

        return TenantRequestContext(
            tenant=tenant,
            service_name=service,
            database_name=database_name,
            connection=connection,
        )

    async def extract_identifier(self, request: Request) -> Optional[str]:
        """Find the tenant identifier of a request, in priority order."""
        for header in (CLIENT_ID_HEADER, TENANT_DOMAIN_HEADER, TENANT_ID_HEADER):
            value = request.headers.get(header, "").strip()
            if value:
                return value

        value = request.query_params.get(TENANT_ID_FIELD, "").strip()
        if value:
            return value

        value = await self._identifier_from_body(request)
        if value:
            return value

        return self.extract_subdomain(request.url.hostname or request.headers.get("host", ""))

    async def _identifier_from_body(self, request: Request) -> Optional[str]:
        if request.method not in BODY_METHODS:
            return None
        if not request.headers.get("content-type", "").startswith("application/json"):
            return None

        body = await request.body()
        if not body:
            return None
        try:
            data: Any = json.loads(body)
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None

        value = data.get(TENANT_ID_FIELD)
        if value is None:
            return None
        return str(value).strip() or None

    def extract_subdomain(self, host: str) -> Optional[str]:
        """Extract a tenant subdomain from a host.

        Examples:
            acme.hrms.local -> acme
            www.hrms.local -> None
            localhost:8000 -> None
        """
        host = host.split(":")[0].strip().lower()
        if not host:
            return None

        try:
            ipaddress.ip_address(host)
            return None
        except ValueError:
            pass

        parts = host.split(".")
        if len(parts) < 2:
            return None

        subdomain = parts[0]
        if not subdomain or subdomain in self._reserved_subdomains:
            return None
        return subdomain

    def _log_rejection(self, error: TenancyError) -> None:
        level = logging.WARNING if error.status_code < 500 else logging.ERROR
        logger.log(level, "Tenant routing rejected request: %s", error, extra=error.log_context())
