# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Per-tenant service settings seeded at provisioning time."""

from typing import Any

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hrms_tenancy.infrastructure.database.models.base import JSONType, TenantBase, TimestampMixin


class TenantSetting(TimestampMixin, TenantBase):
    """A single key/value setting, grouped by section."""

    __tablename__ = "tenant_settings"
    __table_args__ = (UniqueConstraint("section", "key", name="uq_tenant_settings_section_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    section: Mapped[str] = mapped_column(String(100), nullable=False)
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[Any] = mapped_column(JSONType, nullable=True)
