# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Dramatiq broker configuration.

Every platform service runs its own workers against a shared Redis, so
queues live under a per-service namespace (``dramatiq-employee``, ...).
A provisioning message sent to the employee namespace is only consumed by
employee workers, which provision the employee database.

Set ``DRAMATIQ_TEST_MODE=true`` to get an in-memory StubBroker instead.

Example:
    from hrms_tenancy.infrastructure.background.broker import setup_dramatiq

    setup_dramatiq()  # once, before the actor modules are imported
"""

import logging
import os
from typing import TYPE_CHECKING, Any, Optional

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from redis.exceptions import RedisError

from hrms_tenancy.core.config import get_settings

if TYPE_CHECKING:
    from hrms_tenancy.core.config.settings import Settings

logger = logging.getLogger(__name__)


class Queues:
    """Queue names used by the actors."""

    PROVISIONING = "provisioning"
    OUTBOX = "outbox"

    ALL = (PROVISIONING, OUTBOX)


class Priority:
    """Actor priorities, lower runs first."""

    CRITICAL = 0
    HIGH = 1
    NORMAL = 3


def stub_mode() -> bool:
    return os.getenv("DRAMATIQ_TEST_MODE", "false").lower() == "true"


def queue_namespace(service_name: str) -> str:
    return f"dramatiq-{service_name}"


def build_broker(settings: "Settings", *, stub: bool = False) -> dramatiq.Broker:
    """Create the broker for this service without installing it globally."""
    if stub:
        broker = StubBroker()
        broker.emit_after("process_boot")
        return broker
    return RedisBroker(url=settings.redis.url, namespace=queue_namespace(settings.service_name))


class BrokerManager:
    """Owns the process-wide Dramatiq broker."""

    def __init__(self, broker: Optional[dramatiq.Broker] = None) -> None:
        self._broker = broker

    @property
    def is_initialized(self) -> bool:
        return self._broker is not None

    @property
    def broker(self) -> dramatiq.Broker:
        """The installed broker.

        Raises:
            RuntimeError: If setup() has not run.
        """
        if self._broker is None:
            raise RuntimeError("Broker not initialized. Call setup_dramatiq() first.")
        return self._broker

    def setup(self, settings: Optional["Settings"] = None) -> dramatiq.Broker:
        """Build the broker once and install it as Dramatiq's global broker."""
        if self._broker is not None:
            return self._broker

        settings = settings or get_settings()
        broker = build_broker(settings, stub=stub_mode())
        dramatiq.set_broker(broker)
        self._broker = broker

        if isinstance(broker, StubBroker):
            logger.info("Using StubBroker for testing")
        else:
            logger.info(
                "Redis broker initialized (host: %s, namespace: %s)",
                settings.redis.url.split("@")[-1],
                queue_namespace(settings.service_name),
            )
        return broker

    def shutdown(self) -> None:
        if self._broker is None:
            return
        self._broker.close()
        self._broker = None
        logger.info("Broker shutdown complete")

    def get_queue_stats(self) -> dict[str, Any]:
        """Pending message counts per queue."""
        if self._broker is None:
            return {"status": "not_initialized"}

        if isinstance(self._broker, StubBroker):
            return {
                "broker_type": "stub",
                "status": "healthy",
                "queues": {
                    name: queue.qsize()
                    for name, queue in self._broker.queues.items()
                    if name in Queues.ALL
                },
            }

        broker: RedisBroker = self._broker
        try:
            queues = {name: broker.client.llen(f"{broker.namespace}:{name}") for name in Queues.ALL}
        except RedisError as e:
            return {"broker_type": "redis", "status": "error", "error": str(e)}
        return {"broker_type": "redis", "status": "healthy", "queues": queues}


_broker_manager: Optional[BrokerManager] = None


def get_broker_manager() -> BrokerManager:
    global _broker_manager
    if _broker_manager is None:
        _broker_manager = BrokerManager()
    return _broker_manager


def setup_dramatiq(settings: Optional["Settings"] = None) -> dramatiq.Broker:
    """Install the broker. Call before importing the actor modules."""
    return get_broker_manager().setup(settings)


def get_broker() -> dramatiq.Broker:
    """The installed broker.

    Raises:
        RuntimeError: If setup_dramatiq() has not run.
    """
    return get_broker_manager().broker


def shutdown_dramatiq() -> None:
    global _broker_manager
    if _broker_manager is not None:
        _broker_manager.shutdown()
        _broker_manager = None
