# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Create the tenant_settings table.

Revision ID: 002_create_tenant_settings
Revises: 001_create_tenants_table
Create Date: 2025-01-21
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "002_create_tenant_settings"
down_revision: Union[str, None] = "001_create_tenants_table"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create tenant_settings table."""
    op.create_table(
        "tenant_settings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("section", sa.String(100), nullable=False),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column(
            "value",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("section", "key", name="uq_tenant_settings_section_key"),
    )


def downgrade() -> None:
    """Drop tenant_settings table."""
    op.drop_table("tenant_settings")
