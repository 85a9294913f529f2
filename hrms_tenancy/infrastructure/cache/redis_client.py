# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared Redis access for tenant lookups, breaker state and lifecycle events.

Several platform services may point at one Redis instance, so every key
and channel this client touches is prefixed with a namespace (``hrms:`` by
default). Values are stored as JSON; plain strings are stored as-is.

Driver exceptions never leak out of this module: every failing command
raises RedisError, which callers treat as "cache unavailable" and work
around.

Example:
    from hrms_tenancy.infrastructure.cache import init_redis, get_redis

    await init_redis(settings)
    await get_redis().set(f"tenant_info_{tenant.id}", tenant.model_dump(), expire_seconds=300)
"""

import json
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Optional, TypeVar

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError as DriverError

if TYPE_CHECKING:
    from hrms_tenancy.core.config.settings import Settings

T = TypeVar("T")

DEFAULT_NAMESPACE = "hrms"

_redis_client: Optional["RedisClient"] = None


class RedisError(Exception):
    """A Redis command could not be completed.

    Attributes:
        message: What was being attempted.
        original_error: Driver exception, if any.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


def encode(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def decode(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


class RedisClient:
    """Namespaced JSON view over a redis.asyncio connection pool.

    Attributes:
        namespace: Prefix of every key and channel.
    """

    def __init__(self, settings: "Settings", namespace: str = DEFAULT_NAMESPACE) -> None:
        self._url = settings.redis.url
        self._max_connections = settings.redis.max_connections
        self.namespace = namespace
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None

    async def connect(self) -> None:
        """Open the pool and check the server answers.

        Raises:
            RedisError: If the server cannot be reached.
        """
        self._pool = ConnectionPool.from_url(
            self._url, max_connections=self._max_connections, decode_responses=True
        )
        self._redis = Redis(connection_pool=self._pool)
        await self._run(self._redis.ping(), "Failed to connect to Redis")

    async def close(self) -> None:
        redis, pool = self._redis, self._pool
        self._redis = self._pool = None
        if redis is not None:
            await redis.aclose()
        if pool is not None:
            await pool.disconnect()

    def namespaced(self, name: str) -> str:
        """Key or channel name as stored in Redis."""
        return f"{self.namespace}:{name}" if self.namespace else name

    def _client(self) -> Redis:
        if self._redis is None:
            raise RedisError("Redis client not connected")
        return self._redis

    async def _run(self, command: Awaitable[T], failure: str) -> T:
        try:
            return await command
        except DriverError as e:
            raise RedisError(failure, e) from e

    # ========== Commands ==========

    async def get(self, key: str) -> Any:
        """Value stored under ``key``, or None when absent."""
        raw = await self._run(self._client().get(self.namespaced(key)), f"GET {key} failed")
        return decode(raw)

    async def set(self, key: str, value: Any, expire_seconds: Optional[int] = None) -> None:
        """Store ``value`` under ``key``, expiring after ``expire_seconds`` if given."""
        await self._run(
            self._client().set(self.namespaced(key), encode(value), ex=expire_seconds),
            f"SET {key} failed",
        )

    async def delete(self, *keys: str) -> int:
        """Remove keys; returns how many existed."""
        if not keys:
            return 0
        return await self._run(
            self._client().delete(*map(self.namespaced, keys)),
            f"DEL {' '.join(keys)} failed",
        )

    async def publish(self, channel: str, message: Any) -> int:
        """Publish on a namespaced channel; returns the number of receivers."""
        return await self._run(
            self._client().publish(self.namespaced(channel), encode(message)),
            f"PUBLISH {channel} failed",
        )

    async def listen(self, *channels: str) -> AsyncIterator[tuple[str, Any]]:
        """Yield (channel, message) for every message on the given channels.

        Channel names are yielded without the namespace. The subscription
        lasts until the consumer stops iterating.

        Raises:
            RedisError: If the subscription breaks.
        """
        pubsub = self._client().pubsub(ignore_subscribe_messages=True)
        prefix = self.namespaced("")
        try:
            await pubsub.subscribe(*map(self.namespaced, channels))
            async for message in pubsub.listen():
                if not message or message.get("type") != "message":
                    continue
                channel = message["channel"].removeprefix(prefix)
                yield channel, decode(message["data"])
        except DriverError as e:
            raise RedisError(f"Subscription to {', '.join(channels)} lost", e) from e
        finally:
            await pubsub.aclose()

    async def ping(self) -> bool:
        """True if the server answers, never raises."""
        if self._redis is None:
            return False
        try:
            return bool(await self._redis.ping())
        except DriverError:
            return False


async def init_redis(settings: "Settings") -> RedisClient:
    """Connect the process-wide client.

    Raises:
        RedisError: If Redis is unreachable. The global stays unset.
    """
    global _redis_client

    client = RedisClient(settings)
    try:
        await client.connect()
    except RedisError:
        await client.close()
        raise
    _redis_client = client
    return client


async def close_redis() -> None:
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None


def get_redis() -> RedisClient:
    """Process-wide client.

    Raises:
        RedisError: If init_redis() has not succeeded.
    """
    if _redis_client is None:
        raise RedisError("Redis not initialized")
    return _redis_client
