# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Declarative bases for central and tenant database models.

Central models live in the service's own database; tenant models are
created inside every tenant database by the tenant migration set. The two
scopes keep separate metadata so each can be created independently.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from hrms_tenancy.utils.datetime import utc_now

JSONType = JSON().with_variant(JSONB(), "postgresql")


class CentralBase(DeclarativeBase):
    """Base class for models stored in the service's central database."""


class TenantBase(DeclarativeBase):
    """Base class for models stored in each tenant database."""


class TimestampMixin:
    """created_at / updated_at columns maintained on the Python side."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
