# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Transactional outbox table."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from hrms_tenancy.infrastructure.database.models.base import CentralBase, JSONType, TimestampMixin
from hrms_tenancy.utils.datetime import utc_now


class OutboxStatus(str, Enum):
    """Lifecycle of an outbox row."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    FAILED = "failed"


class OutboxEvent(TimestampMixin, CentralBase):
    """A fact waiting to be published to other services.

    Rows are written in the same transaction as the change they announce
    and picked up later by the outbox dispatcher.
    """

    __tablename__ = "events_outbox"
    __table_args__ = (Index("ix_events_outbox_status_available_at", "status", "available_at"),)

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True
    )
    event_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(100), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(150), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    headers: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=OutboxStatus.PENDING.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<OutboxEvent {self.id} {self.event_type} {self.status}>"
