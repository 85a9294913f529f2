# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant metadata as served by the identity authority.

The identity service owns tenants; other services hold a read-only,
cached copy. Domain uniqueness among active tenants is enforced by the
identity service and trusted here.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Tenant(BaseModel):
    """A customer organization.

    Attributes:
        id: Immutable tenant identifier (UUID string).
        name: Display name.
        domain: Secondary lookup key, e.g. acme.example.com.
        is_active: Deactivated tenants are rejected by the router.
        settings: Opaque key-value settings.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    name: str = ""
    domain: str = ""
    is_active: bool = True
    settings: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> str:
        return str(value)

    @field_validator("settings", mode="before")
    @classmethod
    def _settings_default(cls, value: Any) -> dict[str, Any]:
        return value or {}
