# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Running async provisioning code from synchronous Dramatiq actors.

A worker process runs actors on several threads. asyncpg connections,
SQLAlchemy async pools and Redis pools only work on the event loop that
created them, so each thread keeps one loop for its whole life and runs
every actor coroutine on it. The thread's WorkerContext is created on that
same loop and thrown away whenever the loop has to be replaced.
"""

import asyncio
import logging
import threading
from typing import Any, Coroutine, TypeVar

from hrms_tenancy.infrastructure.background.context import clear_thread_worker_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

_loops = threading.local()


def thread_event_loop() -> asyncio.AbstractEventLoop:
    """The current thread's persistent loop, created on first use."""
    loop: asyncio.AbstractEventLoop | None = getattr(_loops, "loop", None)
    if loop is not None and not loop.is_closed():
        return loop

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    _loops.loop = loop
    # Components bound to a previous loop are unusable now
    clear_thread_worker_context()
    logger.debug("Worker thread %s got a new event loop", threading.current_thread().name)
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` to completion on the thread's loop.

    Example:
        @dramatiq.actor(queue_name=Queues.PROVISIONING)
        def provision(tenant: dict):
            async def _run():
                context = await get_worker_context()
                return await context.provisioner.create_tenant_database(Tenant(**tenant))
            return run_async(_run())
    """
    return thread_event_loop().run_until_complete(coro)
