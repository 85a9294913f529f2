# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant database identity derivation.

A tenant owns one physical database per service, named
``tenant_{tenant_id}_{service_name}``. The tenant id keeps its hyphens in
the physical name (PostgreSQL accepts them in quoted identifiers). Registry
keys use the same pattern with every non-identifier character replaced by
an underscore.

Example:
    >>> physical_database_name("11111111-1111-1111-1111-111111111111", "employee")
    'tenant_11111111-1111-1111-1111-111111111111_employee'
    >>> registry_key("11111111-1111-1111-1111-111111111111", "employee")
    'tenant_11111111_1111_1111_1111_111111111111_employee'
"""

import re

from hrms_tenancy.core.exceptions import InvalidArgumentError

TENANT_PREFIX = "tenant_"
DEFAULT_SERVICE = "identity"

_NON_IDENTIFIER = re.compile(r"[^0-9A-Za-z_]")

_SERVICE_ALIASES = {
    "identity-service": "identity",
    "employee-service": "employee",
    "core-service": "core",
    "identity": "identity",
    "employee": "employee",
    "core": "core",
}


def _require(value: str, argument: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{argument} must be a non-empty string")
    return value


def physical_database_name(tenant_id: str, service_name: str) -> str:
    """Return the physical database name of a tenant on a service.

    Args:
        tenant_id: Tenant identifier, kept verbatim.
        service_name: Short service name.

    Returns:
        ``tenant_{tenant_id}_{service_name}``.

    Raises:
        InvalidArgumentError: If either argument is empty.
    """
    _require(tenant_id, "tenant_id")
    _require(service_name, "service_name")
    return f"{TENANT_PREFIX}{tenant_id}_{service_name}"


def registry_key(tenant_id: str, service_name: str) -> str:
    """Return the connection registry key of a tenant on a service.

    Raises:
        InvalidArgumentError: If either argument is empty.
    """
    return _NON_IDENTIFIER.sub("_", physical_database_name(tenant_id, service_name))


def is_tenant_key(key: str) -> bool:
    """Check whether a registry key denotes a tenant connection."""
    return key.startswith(TENANT_PREFIX)


def quote_identifier(name: str) -> str:
    """Quote a PostgreSQL identifier, doubling embedded quotes."""
    _require(name, "name")
    return '"' + name.replace('"', '""') + '"'


def detect_service_name(app_name: str | None) -> str:
    """Map a deployed application name to its short service name.

    Unknown names fall back to the identity service.
    """
    if not app_name:
        return DEFAULT_SERVICE
    return _SERVICE_ALIASES.get(app_name.strip().lower(), DEFAULT_SERVICE)
