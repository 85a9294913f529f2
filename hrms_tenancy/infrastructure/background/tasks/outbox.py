# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Outbox dispatch task.

Publishes pending rows of the central events_outbox table. The message is
sent periodically by cron or a Kubernetes CronJob.
"""

import logging
from typing import Any

import dramatiq

from hrms_tenancy.infrastructure.background.broker import Priority, Queues, setup_dramatiq
from hrms_tenancy.infrastructure.background.context import get_worker_context
from hrms_tenancy.infrastructure.background.tasks.base import run_async

# Setup broker before defining actors
setup_dramatiq()

logger = logging.getLogger(__name__)


@dramatiq.actor(
    queue_name=Queues.OUTBOX,
    max_retries=0,
    time_limit=60000,  # 1 minute
    priority=Priority.HIGH,
)
def dispatch_outbox(limit: int = 50) -> dict[str, Any]:
    """Dispatch a batch of pending outbox events.

    Failed rows are rescheduled by the dispatcher itself, so the actor is
    not retried.

    Args:
        limit: Maximum number of rows to claim.

    Returns:
        Dispatch result with the number of events published.
    """

    async def _dispatch() -> dict[str, Any]:
        context = await get_worker_context()
        dispatched = await context.dispatcher.dispatch_batch(limit)
        return {"dispatched": dispatched, "limit": limit}

    return run_async(_dispatch())


def get_outbox_actors() -> list:
    """Get all outbox actors."""
    return [
        dispatch_outbox,
    ]
