# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis-to-Dramatiq bridge for tenant lifecycle events.

When a tenant is provisioned on one service, the other services must
provision their own database for it. This bridge listens on the
``tenant.created`` channel and forwards every event that originated on a
different service to the provisioning actor, so the work runs durably in
a worker rather than in the listener.

Architecture:
    Redis channel -> TenantEventBridge -> provisioning queue -> worker

Example:
    bridge = TenantEventBridge(redis, settings)
    await bridge.start()
    ...
    await bridge.stop()
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from pydantic import ValidationError

from hrms_tenancy.infrastructure.cache.redis_client import RedisClient, RedisError
from hrms_tenancy.infrastructure.events.publisher import channel_for
from hrms_tenancy.infrastructure.events.types import EventTypes
from hrms_tenancy.models.tenant import Tenant

if TYPE_CHECKING:
    from hrms_tenancy.core.config.settings import Settings

logger = logging.getLogger(__name__)

TenantSender = Callable[[dict[str, Any]], Any]


def _send_to_provisioning_actor(tenant: dict[str, Any]) -> Any:
    # Import here to avoid registering actors in processes that never send
    from hrms_tenancy.infrastructure.background.tasks.provisioning import (
        provision_tenant_database,
    )

    return provision_tenant_database.send(tenant)


class TenantEventBridge:
    """Forwards tenant.created events from other services to a worker queue.

    Attributes:
        service_name: Service this process serves; its own events are ignored.
    """

    def __init__(
        self,
        redis: RedisClient,
        settings: "Settings",
        send: TenantSender = _send_to_provisioning_actor,
        reconnect_delay: float = 5.0,
    ) -> None:
        self._redis = redis
        self._channel = channel_for(settings.outbox.channel_prefix, EventTypes.Tenant.CREATED)
        self._send = send
        self._reconnect_delay = reconnect_delay
        self.service_name = settings.service_name
        self._task: Optional[asyncio.Task[None]] = None
        self._events_forwarded = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def events_forwarded(self) -> int:
        return self._events_forwarded

    async def start(self) -> None:
        """Start listening in a background task."""
        if self.is_running:
            logger.warning("Tenant event bridge already running")
            return
        self._task = asyncio.create_task(self._run(), name="tenant-event-bridge")
        logger.info("Tenant event bridge listening on %s", self._channel)

    async def stop(self) -> None:
        """Stop listening."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Tenant event bridge stopped (%d events forwarded)", self._events_forwarded)

    def handle(self, message: Any) -> bool:
        """Forward one tenant.created message.

        Returns:
            True if the tenant was sent for provisioning.
        """
        if not isinstance(message, dict):
            logger.warning("Ignoring malformed tenant event: %r", message)
            return False

        headers = message.get("headers") or {}
        if headers.get("source_service") == self.service_name:
            return False

        try:
            tenant = Tenant.model_validate(message.get("payload") or {})
        except ValidationError as e:
            logger.warning("Ignoring tenant event %s: %s", message.get("event_id"), e)
            return False

        self._send(tenant.model_dump())
        self._events_forwarded += 1
        logger.info(
            "Forwarded tenant %s from %s for provisioning",
            tenant.id,
            headers.get("source_service", "unknown"),
        )
        return True

    async def _run(self) -> None:
        while True:
            try:
                async for _, message in self._redis.listen(self._channel):
                    self.handle(message)
            except RedisError as e:
                logger.warning(
                    "Tenant event subscription lost, retrying in %ss: %s",
                    self._reconnect_delay,
                    e,
                )
            await asyncio.sleep(self._reconnect_delay)
