# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event publishers used by the outbox dispatcher."""

import logging
from typing import TYPE_CHECKING, Protocol

from hrms_tenancy.infrastructure.cache.redis_client import RedisClient, RedisError

if TYPE_CHECKING:
    from hrms_tenancy.infrastructure.events.types import DomainEvent

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    """Transport that delivers an event to other services."""

    async def publish(self, event: "DomainEvent") -> bool:
        """Deliver an event.

        Returns:
            True if the transport accepted the event.
        """
        ...


def channel_for(prefix: str, event_type: str) -> str:
    """Channel an event type is published on, e.g. hrms.events.tenant.created."""
    return f"{prefix}.{event_type}"


class RedisEventPublisher:
    """Publishes events on Redis pub/sub, one channel per event type."""

    def __init__(self, redis: RedisClient, channel_prefix: str) -> None:
        self._redis = redis
        self._prefix = channel_prefix

    async def publish(self, event: "DomainEvent") -> bool:
        channel = channel_for(self._prefix, event.event_type)
        try:
            receivers = await self._redis.publish(channel, event.to_dict())
        except RedisError as e:
            logger.warning("Failed to publish %s on %s: %s", event.event_id, channel, e)
            return False
        logger.debug("Published %s on %s to %d receivers", event.event_id, channel, receivers)
        return True
