# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cross-service event infrastructure.

Components:
- EventTypes / DomainEvent: event type constants and the type registry
- OutboxEnqueuer: co-transactional writes to the events_outbox table
- OutboxRepository / OutboxDispatcher: claim, publish and mark outbox rows
- RedisEventPublisher: Redis pub/sub transport
- TenantEventBridge: forwards tenant.created from other services to the
  provisioning actor

Architecture:
    Provisioner -> events_outbox -> dispatch_outbox actor -> Redis channel
    -> TenantEventBridge (other services) -> provision_tenant_database actor
"""

from hrms_tenancy.infrastructure.events.bridge import TenantEventBridge
from hrms_tenancy.infrastructure.events.outbox import (
    OutboxDispatcher,
    OutboxEnqueuer,
    OutboxRepository,
    event_from_record,
)
from hrms_tenancy.infrastructure.events.publisher import (
    EventPublisher,
    RedisEventPublisher,
    channel_for,
)
from hrms_tenancy.infrastructure.events.types import (
    EVENT_TYPES,
    DomainEvent,
    EventTypes,
    TenantCreatedEvent,
    TenantDatabaseDroppedEvent,
    UnknownEventTypeError,
    build_event,
    register_event,
)

__all__ = [
    # Types
    "EVENT_TYPES",
    "DomainEvent",
    "EventTypes",
    "TenantCreatedEvent",
    "TenantDatabaseDroppedEvent",
    "UnknownEventTypeError",
    "build_event",
    "register_event",
    # Outbox
    "OutboxDispatcher",
    "OutboxEnqueuer",
    "OutboxRepository",
    "event_from_record",
    # Transport
    "EventPublisher",
    "RedisEventPublisher",
    "channel_for",
    "TenantEventBridge",
]
