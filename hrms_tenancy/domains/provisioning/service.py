# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant database provisioning service.

Creates a tenant's physical database on the current service's server and
brings it to a usable state. The steps run in a fixed order:

    check_exists -> create -> configure -> migrate -> seed -> record -> cache -> announce

create, configure and migrate are fatal: a failure terminates connections
to the half-built database, drops it and re-raises the original error.
The later steps are best-effort and only logged. Whatever happens, the
active connection is restored to central before returning.

A tenant is never provisioned twice at the same time: attempts are
serialized per tenant inside the process and, optionally, across
processes by a PostgreSQL advisory lock.
"""

import asyncio
import logging
import weakref
from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncContextManager, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from hrms_tenancy.core.exceptions import (
    MigrationFailedError,
    ProvisioningError,
    ProvisioningRollbackFailedError,
    ProvisioningTimeoutError,
    RecordFailedError,
    SeedFailedError,
    TenancyError,
)
from hrms_tenancy.core.naming import physical_database_name
from hrms_tenancy.infrastructure.database.connection import DatabaseServer, get_central_session
from hrms_tenancy.infrastructure.database.migrations.runner import run_tenant_migrations
from hrms_tenancy.infrastructure.database.pool import ConnectionPoolManager, PooledConnection
from hrms_tenancy.infrastructure.database.seeds import seed_tenant_database
from hrms_tenancy.infrastructure.database.tenant_records import record_tenant
from hrms_tenancy.infrastructure.events.outbox import OutboxEnqueuer
from hrms_tenancy.infrastructure.events.types import (
    TenantCreatedEvent,
    TenantDatabaseDroppedEvent,
)
from hrms_tenancy.models.tenant import Tenant

if TYPE_CHECKING:
    from hrms_tenancy.core.config.settings import Settings
    from hrms_tenancy.infrastructure.events.types import DomainEvent
    from hrms_tenancy.services.tenant_directory import TenantDirectoryClient

logger = logging.getLogger(__name__)

Migrator = Callable[[AsyncEngine], Awaitable[list[str]]]
Seeder = Callable[[AsyncEngine, str], Awaitable[int]]
Recorder = Callable[[AsyncEngine, Tenant, str], Awaitable[bool]]
SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class ProvisioningStep(str, Enum):
    """Steps of a provisioning attempt, in execution order."""

    CHECK_EXISTS = "check_exists"
    CREATE = "create"
    CONFIGURE = "configure"
    MIGRATE = "migrate"
    SEED = "seed"
    RECORD = "record"
    CACHE = "cache"
    ANNOUNCE = "announce"


FATAL_STEPS = frozenset(
    {ProvisioningStep.CREATE, ProvisioningStep.CONFIGURE, ProvisioningStep.MIGRATE}
)


@dataclass
class ProvisioningAttempt:
    """Transient state of one create call, used to decide what to roll back.

    Attributes:
        tenant_id: Tenant being provisioned.
        database_name: Target physical database.
        completed: Steps finished so far.
        current: Step in progress.
        created_database: Whether this attempt issued CREATE DATABASE.
        entry: Leased pool entry for the new database.
    """

    tenant_id: str
    database_name: str
    completed: list[ProvisioningStep] = field(default_factory=list)
    current: Optional[ProvisioningStep] = None
    created_database: bool = False
    entry: Optional[PooledConnection] = None

    def begin(self, step: ProvisioningStep) -> None:
        self.current = step

    def complete(self, step: ProvisioningStep) -> None:
        self.completed.append(step)
        self.current = None

    @property
    def schema_ready(self) -> bool:
        """Whether the migrate step finished; only earlier failures roll back."""
        return ProvisioningStep.MIGRATE in self.completed


@dataclass
class ProvisioningResult:
    """Outcome of create_tenant_database().

    Attributes:
        tenant_id: Provisioned tenant.
        database_name: Physical database name.
        created: False when the database already existed.
        steps: Completed step names.
        applied_migrations: Revisions applied by the migrate step.
        warnings: Best-effort step failures.
    """

    tenant_id: str
    database_name: str
    created: bool
    steps: list[str] = field(default_factory=list)
    applied_migrations: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "database_name": self.database_name,
            "created": self.created,
            "steps": list(self.steps),
            "applied_migrations": list(self.applied_migrations),
            "warnings": list(self.warnings),
        }


class TenantDatabaseProvisioner:
    """Creates and drops tenant databases on the current service's server.

    Attributes:
        service_name: Service whose databases are managed.
    """

    def __init__(
        self,
        settings: "Settings",
        server: DatabaseServer,
        pool: ConnectionPoolManager,
        directory: "TenantDirectoryClient",
        *,
        migrator: Migrator = run_tenant_migrations,
        seeder: Seeder = seed_tenant_database,
        recorder: Recorder = record_tenant,
        outbox: Optional[OutboxEnqueuer] = None,
        session_factory: SessionFactory = get_central_session,
    ) -> None:
        """Initialize the provisioner.

        Args:
            settings: Application settings.
            server: Administrative access to the service's database server.
            pool: Pool manager the new database is configured in.
            directory: Directory client whose cache is warmed on success.
            migrator: Applies the tenant schema to an engine.
            seeder: Applies default seed data to an engine.
            recorder: Writes the tenant ownership row.
            outbox: Enqueuer for lifecycle events. Nothing is announced when None.
            session_factory: Central-database session factory for the outbox.
        """
        self._settings = settings.provisioning
        self._server = server
        self._pool = pool
        self._directory = directory
        self._migrator = migrator
        self._seeder = seeder
        self._recorder = recorder
        self._outbox = outbox
        self._session_factory = session_factory
        self.service_name = settings.service_name
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # ========== Public API ==========

    async def tenant_database_exists(self, tenant_id: str) -> bool:
        """Check whether the tenant's database exists on this server."""
        return await self._server.database_exists(
            physical_database_name(tenant_id, self.service_name)
        )

    async def create_tenant_database(
        self,
        tenant: Tenant,
        *,
        announce: Optional[bool] = None,
    ) -> ProvisioningResult:
        """Provision the tenant's database on this service.

        Idempotent: if the database already exists nothing is changed.

        Args:
            tenant: Tenant to provision.
            announce: Enqueue tenant.created on success. Defaults to the
                ``announce_created`` setting.

        Returns:
            ProvisioningResult describing what was done.

        Raises:
            ConnectionFailedError: If the server cannot be reached or the
                database cannot be created or connected to.
            VerificationMismatchError: If the new connection reports
                another database.
            MigrationFailedError: If the schema cannot be applied.
            ProvisioningTimeoutError: If the deadline fires before migrations finish.
        """
        database_name = physical_database_name(tenant.id, self.service_name)
        if announce is None:
            announce = self._settings.announce_created

        async with self._tenant_lock(tenant.id):
            async with self._advisory_lock(database_name):
                return await self._provision(tenant, database_name, announce)

    async def drop_tenant_database(self, tenant: Tenant) -> None:
        """Drop the tenant's database on this service.

        Connections are terminated first; a termination failure is logged
        and the drop is attempted anyway. Pool and cache entries for the
        tenant are removed in every case.

        Raises:
            ProvisioningError: If DROP DATABASE fails.
        """
        database_name = physical_database_name(tenant.id, self.service_name)
        context = {"tenant_id": tenant.id, "service": self.service_name}

        async with self._tenant_lock(tenant.id):
            try:
                await self._pool.evict(tenant.id)

                try:
                    await self._server.terminate_connections(database_name)
                except TenancyError as e:
                    logger.warning(
                        "Failed to terminate connections to %s, dropping anyway: %s",
                        database_name,
                        e,
                    )

                drop_error: Optional[TenancyError] = None
                try:
                    await self._server.drop_database(database_name)
                except TenancyError as e:
                    logger.error("Failed to drop tenant database %s: %s", database_name, e)
                    drop_error = e

                await self._directory.invalidate(tenant.id, tenant.domain)

                if drop_error is not None:
                    raise ProvisioningError(
                        "Failed to drop tenant database",
                        step="drop",
                        database_name=database_name,
                        original_error=drop_error,
                        **context,
                    ) from drop_error

                logger.info("Dropped tenant database %s", database_name)
                if self._outbox is not None:
                    await self._announce(
                        TenantDatabaseDroppedEvent.for_tenant(
                            tenant, source_service=self.service_name, database_name=database_name
                        )
                    )
            finally:
                await self._pool.restore_central()

    # ========== Steps ==========

    async def _provision(
        self, tenant: Tenant, database_name: str, announce: bool
    ) -> ProvisioningResult:
        attempt = ProvisioningAttempt(tenant_id=tenant.id, database_name=database_name)
        result = ProvisioningResult(tenant_id=tenant.id, database_name=database_name, created=False)

        try:
            try:
                async with asyncio.timeout(self._settings.timeout_seconds):
                    await self._run_steps(tenant, attempt, result, announce)
            except TimeoutError as e:
                step = attempt.current.value if attempt.current else "unknown"
                if not attempt.schema_ready:
                    error = ProvisioningTimeoutError(
                        f"Provisioning timed out after {self._settings.timeout_seconds}s",
                        step=step,
                        tenant_id=tenant.id,
                        service=self.service_name,
                        database_name=database_name,
                    )
                    await asyncio.shield(self._rollback(attempt, error))
                    raise error from e
                logger.warning(
                    "Provisioning of %s timed out during %s, keeping database",
                    database_name,
                    step,
                )
                result.warnings.append(f"timeout during {step}")
            except BaseException as e:
                # Includes cancellation, which the shielded rollback survives
                if not attempt.schema_ready:
                    await asyncio.shield(self._rollback(attempt, e))
                raise
        finally:
            if attempt.entry is not None:
                await self._pool.release(attempt.entry)
            await self._pool.restore_central()

        result.steps = [step.value for step in attempt.completed]
        return result

    async def _run_steps(
        self,
        tenant: Tenant,
        attempt: ProvisioningAttempt,
        result: ProvisioningResult,
        announce: bool,
    ) -> None:
        database_name = attempt.database_name
        context = {
            "tenant_id": tenant.id,
            "service": self.service_name,
            "database_name": database_name,
        }

        attempt.begin(ProvisioningStep.CHECK_EXISTS)
        exists = await self._server.database_exists(database_name)
        attempt.complete(ProvisioningStep.CHECK_EXISTS)
        if exists:
            logger.info("Tenant database %s already exists", database_name)
            return

        logger.info("Provisioning tenant database %s", database_name)

        attempt.begin(ProvisioningStep.CREATE)
        await self._server.create_database(database_name)
        attempt.created_database = True
        result.created = True
        attempt.complete(ProvisioningStep.CREATE)

        attempt.begin(ProvisioningStep.CONFIGURE)
        attempt.entry = await self._pool.configure_tenant_connection(tenant.id)
        attempt.complete(ProvisioningStep.CONFIGURE)
        engine = attempt.entry.engine

        attempt.begin(ProvisioningStep.MIGRATE)
        try:
            result.applied_migrations = await self._migrator(engine)
        except Exception as e:
            raise MigrationFailedError(
                "Tenant migrations failed",
                step=ProvisioningStep.MIGRATE.value,
                original_error=e,
                **context,
            ) from e
        attempt.complete(ProvisioningStep.MIGRATE)

        if self._settings.run_seeders:
            attempt.begin(ProvisioningStep.SEED)
            try:
                await self._seeder(engine, self.service_name)
            except Exception as e:
                self._warn(
                    result,
                    SeedFailedError("Seeding failed", step="seed", original_error=e, **context),
                )
            else:
                attempt.complete(ProvisioningStep.SEED)

        attempt.begin(ProvisioningStep.RECORD)
        try:
            await self._recorder(engine, tenant, database_name)
        except Exception as e:
            self._warn(
                result,
                RecordFailedError(
                    "Recording tenant failed", step="record", original_error=e, **context
                ),
            )
        else:
            attempt.complete(ProvisioningStep.RECORD)

        attempt.begin(ProvisioningStep.CACHE)
        try:
            await self._directory.remember(tenant)
        except Exception as e:
            logger.warning("Failed to cache tenant %s: %s", tenant.id, e)
            result.warnings.append(f"cache: {e}")
        else:
            attempt.complete(ProvisioningStep.CACHE)

        if announce and self._outbox is not None:
            attempt.begin(ProvisioningStep.ANNOUNCE)
            try:
                await self._announce(
                    TenantCreatedEvent.for_tenant(tenant, source_service=self.service_name)
                )
            except Exception as e:
                logger.warning("Failed to announce tenant %s: %s", tenant.id, e)
                result.warnings.append(f"announce: {e}")
            else:
                attempt.complete(ProvisioningStep.ANNOUNCE)

        logger.info(
            "Provisioned tenant database %s (%d migrations)",
            database_name,
            len(result.applied_migrations),
        )

    def _warn(self, result: ProvisioningResult, error: ProvisioningError) -> None:
        logger.warning(
            "%s for %s, continuing: %s",
            error.message,
            error.database_name,
            error.original_error,
            exc_info=error.original_error,
        )
        result.warnings.append(f"{error.step}: {error.original_error}")

    async def _announce(self, event: "DomainEvent") -> None:
        if self._outbox is None:
            return
        async with self._session_factory() as session:
            await self._outbox.enqueue_event(session, event)

    # ========== Rollback ==========

    async def _rollback(self, attempt: ProvisioningAttempt, error: BaseException) -> None:
        """Undo a failed attempt without masking ``error``.

        Only a database created by this attempt is dropped.
        """
        database_name = attempt.database_name
        logger.error(
            "Provisioning of %s failed at %s, rolling back: %s",
            database_name,
            attempt.current.value if attempt.current else "unknown",
            error,
        )

        await self._pool.evict(attempt.tenant_id)
        if not attempt.created_database:
            return

        try:
            await self._server.terminate_connections(database_name)
        except TenancyError as e:
            logger.warning("Rollback could not terminate connections to %s: %s", database_name, e)

        try:
            await self._server.drop_database(database_name)
        except TenancyError as e:
            failure = ProvisioningRollbackFailedError(
                "Rollback failed to drop database",
                step="rollback",
                tenant_id=attempt.tenant_id,
                service=self.service_name,
                database_name=database_name,
                original_error=e,
            )
            logger.critical("%s; orphaned database %s", failure, database_name)
            error.add_note(f"Rollback failed: {failure}")
            return

        logger.info("Rolled back tenant database %s", database_name)

    # ========== Locks ==========

    def _tenant_lock(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tenant_id] = lock
        return lock

    def _advisory_lock(self, database_name: str) -> AsyncContextManager[Any]:
        if not self._settings.use_advisory_lock:
            return nullcontext()
        return self._server.advisory_lock(f"provision:{database_name}")
