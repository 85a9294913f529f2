# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Cross-service event types.

Events are stored in the outbox by type string and rebuilt by the
dispatcher. The mapping from type string to event class is a plain
registry filled when this module is imported, so an unknown type is
detected by a dictionary lookup rather than by loading code by name.

Adding a new event:
1. Add the type constant to EventTypes
2. Subclass DomainEvent with that ``event_type`` and decorate it with
   ``@register_event``
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Optional
from uuid import uuid4

from hrms_tenancy.models.tenant import Tenant
from hrms_tenancy.utils.datetime import format_iso, utc_now


class EventTypes:
    """Event type strings shared by every platform service."""

    class Tenant:
        """Tenant lifecycle events."""

        CREATED = "tenant.created"
        DATABASE_DROPPED = "tenant.database_dropped"


class UnknownEventTypeError(KeyError):
    """Raised when an outbox row names an unregistered event type."""


@dataclass
class DomainEvent:
    """A fact announced to other services.

    Attributes:
        tenant_id: Tenant the fact is about.
        payload: Event body.
        headers: Transport metadata (originating service, correlation ids).
        event_id: Unique event identifier, also the outbox row key.
        occurred_at: When the fact was recorded.
    """

    event_type: ClassVar[str] = ""
    aggregate_type: ClassVar[str] = "tenant"

    tenant_id: Optional[str]
    payload: dict[str, Any]
    headers: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=utc_now)

    @property
    def aggregate_id(self) -> str:
        return str(self.payload.get("id") or self.tenant_id or "")

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "tenant_id": self.tenant_id,
            "payload": self.payload,
            "headers": self.headers,
            "occurred_at": format_iso(self.occurred_at),
        }


EVENT_TYPES: dict[str, type[DomainEvent]] = {}


def register_event(cls: type[DomainEvent]) -> type[DomainEvent]:
    """Class decorator adding an event class to the registry."""
    if not cls.event_type:
        raise ValueError(f"{cls.__name__} has no event_type")
    if cls.event_type in EVENT_TYPES:
        raise ValueError(f"Event type {cls.event_type} registered twice")
    EVENT_TYPES[cls.event_type] = cls
    return cls


def build_event(event_type: str, **fields: Any) -> DomainEvent:
    """Rebuild an event object from its type string and stored fields.

    Raises:
        UnknownEventTypeError: If no event class is registered for the type.
    """
    try:
        cls = EVENT_TYPES[event_type]
    except KeyError:
        raise UnknownEventTypeError(event_type) from None
    return cls(**fields)


@register_event
@dataclass
class TenantCreatedEvent(DomainEvent):
    """A tenant was provisioned on its originating service.

    Other services react by provisioning their own database for it.
    """

    event_type: ClassVar[str] = EventTypes.Tenant.CREATED

    @classmethod
    def for_tenant(cls, tenant: Tenant, *, source_service: str) -> "TenantCreatedEvent":
        return cls(
            tenant_id=tenant.id,
            payload=tenant.model_dump(),
            headers={"source_service": source_service},
        )

    @property
    def source_service(self) -> Optional[str]:
        return self.headers.get("source_service")

    def tenant(self) -> Tenant:
        return Tenant.model_validate(self.payload)


@register_event
@dataclass
class TenantDatabaseDroppedEvent(DomainEvent):
    """A service dropped its database for a tenant."""

    event_type: ClassVar[str] = EventTypes.Tenant.DATABASE_DROPPED

    @classmethod
    def for_tenant(
        cls, tenant: Tenant, *, source_service: str, database_name: str
    ) -> "TenantDatabaseDroppedEvent":
        return cls(
            tenant_id=tenant.id,
            payload={"id": tenant.id, "database_name": database_name},
            headers={"source_service": source_service},
        )
