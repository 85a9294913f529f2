# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Models stored in the service's central database."""

from hrms_tenancy.infrastructure.database.models.central.outbox import OutboxEvent, OutboxStatus

__all__ = ["OutboxEvent", "OutboxStatus"]
