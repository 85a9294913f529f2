# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database migration runner.

Applies migration modules programmatically, without the alembic CLI, to an
already-configured engine. Two migration sets exist:

- tenant: the service schema created inside every tenant database.
- central: tables of the service's own database (the event outbox).

Each set tracks its position in an ``alembic_version`` table of the
database it runs against.

Example:
    from hrms_tenancy.infrastructure.database.migrations.runner import run_tenant_migrations

    entry = await pool.configure_tenant_connection(tenant_id)
    applied = await run_tenant_migrations(entry.engine)
"""

import importlib
import logging
from typing import Any, Callable, Literal

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

Scope = Literal["tenant", "central"]

# Migration files in order (must be maintained manually)
MIGRATIONS: dict[str, list[str]] = {
    "tenant": [
        "001_create_tenants_table",
        "002_create_tenant_settings",
    ],
    "central": [
        "001_create_events_outbox",
    ],
}


class MigrationError(Exception):
    """Raised when a migration module is missing or malformed."""


async def run_migrations(
    engine: AsyncEngine,
    scope: Scope,
    target_revision: str | None = None,
) -> list[str]:
    """Run pending migrations of a scope against an engine.

    Args:
        engine: Engine bound to the database to migrate. Not disposed.
        scope: Migration set to apply.
        target_revision: Optional revision to stop at (inclusive).

    Returns:
        List of applied revision IDs.

    Raises:
        MigrationError: If a migration module cannot be loaded.
        SQLAlchemyError: If a migration statement fails.
    """
    await _ensure_version_table(engine)

    current_version = await _get_current_version(engine)
    logger.info("Current %s migration version: %s", scope, current_version or "None")

    pending = _get_pending_migrations(scope, current_version, target_revision)
    if not pending:
        logger.info("No pending %s migrations", scope)
        return []

    logger.info("Applying %d %s migrations: %s", len(pending), scope, ", ".join(pending))

    applied = []
    for revision in pending:
        await _apply_migration(engine, scope, revision)
        applied.append(revision)
        logger.info("Applied migration: %s/%s", scope, revision)

    return applied


async def run_tenant_migrations(engine: AsyncEngine) -> list[str]:
    """Bring a tenant database up to the latest service schema."""
    return await run_migrations(engine, "tenant")


async def run_central_migrations(engine: AsyncEngine) -> list[str]:
    """Bring the service's central database up to date."""
    return await run_migrations(engine, "central")


async def get_migration_status(engine: AsyncEngine, scope: Scope) -> dict[str, Any]:
    """Describe the migration state of a database.

    Returns:
        Dict with current version, pending migrations and whether the
        database is up to date.
    """
    await _ensure_version_table(engine)
    current_version = await _get_current_version(engine)
    pending = _get_pending_migrations(scope, current_version)
    revisions = MIGRATIONS[scope]

    return {
        "scope": scope,
        "current_version": current_version,
        "latest_version": revisions[-1] if revisions else None,
        "pending_migrations": pending,
        "is_up_to_date": not pending,
    }


async def _ensure_version_table(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.execute(
            text("""
                CREATE TABLE IF NOT EXISTS alembic_version (
                    version_num VARCHAR(128) NOT NULL,
                    CONSTRAINT alembic_version_pkc PRIMARY KEY (version_num)
                )
            """)
        )


async def _get_current_version(engine: AsyncEngine) -> str | None:
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT version_num FROM alembic_version LIMIT 1"))
        row = result.fetchone()
        return row[0] if row else None


def _get_pending_migrations(
    scope: Scope,
    current_version: str | None,
    target_revision: str | None = None,
) -> list[str]:
    revisions = MIGRATIONS[scope]

    if current_version is None:
        start_idx = 0
    else:
        try:
            start_idx = revisions.index(current_version) + 1
        except ValueError:
            logger.warning(
                "Current %s version %s not in known migrations list", scope, current_version
            )
            return []

    if target_revision:
        try:
            end_idx = revisions.index(target_revision) + 1
        except ValueError:
            logger.warning("Target revision %s not found in %s migrations", target_revision, scope)
            return []
    else:
        end_idx = len(revisions)

    return revisions[start_idx:end_idx]


def _load_upgrade(scope: Scope, revision: str) -> Callable[[], None]:
    module_name = f"hrms_tenancy.infrastructure.database.migrations.{scope}.{revision}"
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise MigrationError(f"Cannot import migration {scope}/{revision}: {e}") from e

    upgrade_fn = getattr(module, "upgrade", None)
    if upgrade_fn is None:
        raise MigrationError(f"Migration {scope}/{revision} has no upgrade() function")
    return upgrade_fn


async def _apply_migration(engine: AsyncEngine, scope: Scope, revision: str) -> None:
    upgrade_fn = _load_upgrade(scope, revision)

    async with engine.begin() as conn:
        await conn.run_sync(_run_upgrade_sync, upgrade_fn)

        await conn.execute(text("DELETE FROM alembic_version"))
        await conn.execute(
            text("INSERT INTO alembic_version (version_num) VALUES (:version)"),
            {"version": revision},
        )


def _run_upgrade_sync(connection: Connection, upgrade_fn: Callable[[], None]) -> None:
    """Run an upgrade function with alembic operations bound to a connection."""
    from alembic.operations import Operations
    from alembic.runtime.migration import MigrationContext

    context = MigrationContext.configure(connection)

    with context.begin_transaction():
        with Operations.context(context):
            upgrade_fn()
