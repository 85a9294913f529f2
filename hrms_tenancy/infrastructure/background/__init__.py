# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Background task infrastructure.

Provides Dramatiq-based processing for work that must not run inside a
request: publishing the outbox and provisioning tenant databases
announced by other services.

Quick Start:
    from hrms_tenancy.infrastructure.background import setup_dramatiq
    setup_dramatiq()

    from hrms_tenancy.infrastructure.background.tasks import dispatch_outbox
    dispatch_outbox.send(limit=50)

Actors are imported from the tasks package only, so that importing this
package does not register them.
"""

from hrms_tenancy.infrastructure.background.broker import (
    BrokerManager,
    Priority,
    Queues,
    get_broker,
    get_broker_manager,
    setup_dramatiq,
    shutdown_dramatiq,
)

__all__ = [
    "BrokerManager",
    "Priority",
    "Queues",
    "get_broker",
    "get_broker_manager",
    "setup_dramatiq",
    "shutdown_dramatiq",
]
