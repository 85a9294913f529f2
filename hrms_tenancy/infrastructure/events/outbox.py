# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Transactional outbox.

A fact about a domain change is written to the ``events_outbox`` table in
the same transaction as the change itself: if the change commits the fact
is never lost, if it rolls back the fact is never announced. A background
dispatcher later claims due rows, publishes them and records the outcome.

Example:
    async with get_central_session() as session:
        session.add(record)
        await OutboxEnqueuer().enqueue_event(session, event)

    dispatcher = OutboxDispatcher(publisher, get_central_session, settings)
    sent = await dispatcher.dispatch_batch()
"""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, AsyncContextManager, Callable, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hrms_tenancy.infrastructure.database.models.central.outbox import OutboxEvent, OutboxStatus
from hrms_tenancy.infrastructure.events.publisher import EventPublisher
from hrms_tenancy.infrastructure.events.types import (
    DomainEvent,
    UnknownEventTypeError,
    build_event,
)
from hrms_tenancy.utils.datetime import ensure_utc, utc_now

if TYPE_CHECKING:
    from hrms_tenancy.core.config.settings import Settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class OutboxEnqueuer:
    """Adds pending rows to the caller's session.

    Nothing is committed here; the row becomes visible together with the
    caller's own writes.
    """

    async def enqueue(
        self,
        session: AsyncSession,
        *,
        tenant_id: Optional[str],
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, Any]] = None,
        event_id: Optional[str] = None,
    ) -> OutboxEvent:
        """Persist a fact for later dispatch.

        Returns:
            The pending outbox row (flushed, not committed).
        """
        now = utc_now()
        row = OutboxEvent(
            event_id=event_id or str(uuid4()),
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
            headers=headers or None,
            tenant_id=tenant_id,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            available_at=now,
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        await session.flush()
        logger.debug("Enqueued %s for tenant %s", event_type, tenant_id)
        return row

    async def enqueue_event(self, session: AsyncSession, event: DomainEvent) -> OutboxEvent:
        """Persist a typed event, keeping its event id."""
        return await self.enqueue(
            session,
            tenant_id=event.tenant_id,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id,
            event_type=event.event_type,
            payload=event.payload,
            headers=event.headers,
            event_id=event.event_id,
        )


class OutboxRepository:
    """Record access used by the dispatcher.

    Attributes:
        max_attempts: Attempts after which a row stays ``failed``.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        max_attempts: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session = session
        self.max_attempts = max_attempts
        self._clock = clock

    async def claim_pending_batch(self, limit: int = 50) -> list[OutboxEvent]:
        """Lock and return due pending rows, oldest first.

        Rows locked by a concurrent dispatcher are skipped, so two workers
        never publish the same row in parallel.
        """
        stmt = (
            select(OutboxEvent)
            .where(
                OutboxEvent.status == OutboxStatus.PENDING.value,
                OutboxEvent.available_at <= self._clock(),
            )
            .order_by(OutboxEvent.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_dispatched(self, outbox_id: int) -> None:
        await self._session.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == outbox_id)
            .values(status=OutboxStatus.DISPATCHED.value, updated_at=self._clock())
        )

    async def mark_failed(self, outbox_id: int, attempts: int, retry_delay_seconds: int) -> None:
        """Record a failed attempt and schedule the next one.

        Once ``attempts`` reaches max_attempts the row is parked as
        ``failed`` and no longer claimed.
        """
        now = self._clock()
        status = OutboxStatus.FAILED if attempts >= self.max_attempts else OutboxStatus.PENDING
        await self._session.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == outbox_id)
            .values(
                status=status.value,
                attempts=attempts,
                available_at=now + timedelta(seconds=retry_delay_seconds),
                updated_at=now,
            )
        )
        if status is OutboxStatus.FAILED:
            logger.error("Outbox row %s failed permanently after %d attempts", outbox_id, attempts)


def event_from_record(record: OutboxEvent) -> DomainEvent:
    """Rebuild the typed event stored in an outbox row.

    Raises:
        UnknownEventTypeError: If the row's event type is not registered.
    """
    return build_event(
        record.event_type,
        tenant_id=record.tenant_id,
        payload=dict(record.payload or {}),
        headers=dict(record.headers or {}),
        event_id=record.event_id,
        occurred_at=ensure_utc(record.created_at) or utc_now(),
    )


class OutboxDispatcher:
    """Publishes due outbox rows.

    Each call runs in one central-database transaction: rows stay locked
    until their outcome is recorded and committed.
    """

    def __init__(
        self,
        publisher: EventPublisher,
        session_factory: SessionFactory,
        settings: "Settings",
    ) -> None:
        self._publisher = publisher
        self._session_factory = session_factory
        self._settings = settings.outbox

    async def dispatch_batch(self, limit: Optional[int] = None) -> int:
        """Publish up to ``limit`` due events.

        Returns:
            Number of events published.
        """
        limit = limit or self._settings.batch_size
        dispatched = 0

        async with self._session_factory() as session:
            outbox = OutboxRepository(session, max_attempts=self._settings.max_attempts)
            records = await outbox.claim_pending_batch(limit)

            for record in records:
                attempts = (record.attempts or 0) + 1
                try:
                    event = event_from_record(record)
                except UnknownEventTypeError:
                    logger.error(
                        "Outbox dispatch failed for row %s: unknown event type %s",
                        record.id,
                        record.event_type,
                    )
                    await outbox.mark_failed(record.id, attempts, self._settings.retry_delay_seconds)
                    continue

                if await self._publisher.publish(event):
                    await outbox.mark_dispatched(record.id)
                    dispatched += 1
                else:
                    logger.warning(
                        "Publishing %s (row %s) failed, attempt %d",
                        record.event_type,
                        record.id,
                        attempts,
                    )
                    await outbox.mark_failed(record.id, attempts, self._settings.retry_delay_seconds)

        if records:
            logger.info("Dispatched %d/%d outbox events", dispatched, len(records))
        return dispatched
