# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for PostgreSQL connections.

This package provides:
- Central database: the service's own database, also used for administration
- Tenant databases: one physical database per tenant on the same server,
  pooled and routed by ConnectionPoolManager

Example:
    from hrms_tenancy.infrastructure.database import (
        ConnectionPoolManager,
        DatabaseServer,
        get_central_engine,
    )

    server = DatabaseServer(get_central_engine(), settings.service_name)
    pool = ConnectionPoolManager(settings, server, directory)
"""

from hrms_tenancy.infrastructure.database.connection import (
    DatabaseError,
    DatabaseServer,
    check_central_database_connection,
    close_central_database,
    create_central_engine,
    fetch_current_database,
    get_central_engine,
    get_central_session,
    init_central_database,
    probe,
)
from hrms_tenancy.infrastructure.database.pool import (
    ActiveConnection,
    ConnectionInfo,
    ConnectionPoolManager,
    PooledConnection,
)

__all__ = [
    # Central database
    "DatabaseError",
    "DatabaseServer",
    "check_central_database_connection",
    "close_central_database",
    "create_central_engine",
    "get_central_engine",
    "get_central_session",
    "init_central_database",
    "probe",
    "fetch_current_database",
    # Tenant connection pool
    "ActiveConnection",
    "ConnectionInfo",
    "ConnectionPoolManager",
    "PooledConnection",
]
