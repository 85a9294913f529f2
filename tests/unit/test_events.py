# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for event types, publishing and the tenant event bridge."""

from dataclasses import dataclass
from typing import ClassVar
from unittest.mock import MagicMock

import pytest

from hrms_tenancy.infrastructure.events import (
    EVENT_TYPES,
    DomainEvent,
    EventTypes,
    RedisEventPublisher,
    TenantCreatedEvent,
    TenantDatabaseDroppedEvent,
    TenantEventBridge,
    UnknownEventTypeError,
    build_event,
    channel_for,
    register_event,
)
from hrms_tenancy.models.tenant import Tenant

TENANT = Tenant(id="11111111-1111-1111-1111-111111111111", name="Acme", domain="acme.example.com")


class TestEventTypes:
    def test_lifecycle_events_are_registered(self):
        assert EVENT_TYPES[EventTypes.Tenant.CREATED] is TenantCreatedEvent
        assert EVENT_TYPES[EventTypes.Tenant.DATABASE_DROPPED] is TenantDatabaseDroppedEvent

    def test_build_unknown_type(self):
        with pytest.raises(UnknownEventTypeError):
            build_event("tenant.renamed", tenant_id=None, payload={})

    def test_register_rejects_duplicates(self):
        with pytest.raises(ValueError):

            @register_event
            @dataclass
            class Duplicate(DomainEvent):
                event_type: ClassVar[str] = EventTypes.Tenant.CREATED

    def test_tenant_created_carries_tenant(self):
        event = TenantCreatedEvent.for_tenant(TENANT, source_service="identity")

        assert event.aggregate_id == TENANT.id
        assert event.source_service == "identity"
        assert event.tenant() == TENANT

    def test_to_dict(self):
        event = TenantCreatedEvent.for_tenant(TENANT, source_service="identity")
        data = event.to_dict()

        assert data["event_type"] == "tenant.created"
        assert data["payload"]["domain"] == "acme.example.com"
        assert data["occurred_at"].endswith("+00:00")


class TestRedisEventPublisher:
    @pytest.mark.asyncio
    async def test_publishes_on_event_channel(self, fake_redis):
        publisher = RedisEventPublisher(fake_redis, "hrms.events")
        event = TenantCreatedEvent.for_tenant(TENANT, source_service="identity")

        assert await publisher.publish(event)

        channel, message = fake_redis.published[0]
        assert channel == "hrms.events.tenant.created"
        assert message["event_id"] == event.event_id

    @pytest.mark.asyncio
    async def test_redis_failure_returns_false(self, fake_redis):
        fake_redis.broken = True
        publisher = RedisEventPublisher(fake_redis, "hrms.events")

        assert not await publisher.publish(
            TenantCreatedEvent.for_tenant(TENANT, source_service="identity")
        )


def test_channel_for():
    assert channel_for("hrms.events", "tenant.created") == "hrms.events.tenant.created"


class TestTenantEventBridge:
    @pytest.fixture
    def send(self):
        return MagicMock()

    @pytest.fixture
    def bridge(self, fake_redis, settings, send):
        return TenantEventBridge(fake_redis, settings, send=send)

    def test_forwards_events_from_other_services(self, bridge, send):
        message = TenantCreatedEvent.for_tenant(TENANT, source_service="identity").to_dict()

        assert bridge.handle(message)

        send.assert_called_once()
        assert send.call_args.args[0]["id"] == TENANT.id
        assert bridge.events_forwarded == 1

    def test_ignores_own_events(self, bridge, send):
        message = TenantCreatedEvent.for_tenant(TENANT, source_service="employee").to_dict()

        assert not bridge.handle(message)
        send.assert_not_called()

    @pytest.mark.parametrize("message", ["tenant.created", None, ["x"]])
    def test_ignores_malformed_messages(self, bridge, send, message):
        assert not bridge.handle(message)
        send.assert_not_called()

    def test_ignores_invalid_payload(self, bridge, send):
        assert not bridge.handle({"headers": {"source_service": "identity"}, "payload": {}})
        send.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, bridge):
        await bridge.stop()
        assert not bridge.is_running
