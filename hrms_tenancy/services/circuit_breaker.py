# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Circuit breaker for calls to remote platform services.

Failures are counted in a rolling window. Once the threshold is reached
the circuit opens and callers skip the remote call for the cooldown. After
the cooldown a single trial call is let through (half-open): success
closes the circuit, failure re-opens it. A trial that never reports
back, because its caller was cancelled, frees its slot one cooldown later.

State is kept in Redis when a client is given, so every worker process of
a service sees the same circuit. Without Redis, or when Redis fails, the
breaker falls back to in-process state.

Example:
    breaker = CircuitBreaker("identity", redis=get_redis())
    if await breaker.allow_request():
        try:
            response = await call()
        except httpx.TransportError:
            await breaker.record_failure()
        else:
            await breaker.record_success()
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from hrms_tenancy.infrastructure.cache.redis_client import RedisClient, RedisError

logger = logging.getLogger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Breaker thresholds.

    Attributes:
        failure_threshold: Failures within the window that open the circuit.
        cooldown_seconds: Seconds the circuit stays open.
        window_seconds: Length of the rolling failure window.
        half_open_trials: Calls allowed through while half-open.
    """

    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    window_seconds: float = 60.0
    half_open_trials: int = 1


@dataclass
class CircuitBreakerState:
    state: str = CLOSED
    failures: int = 0
    window_started_at: Optional[float] = None
    opened_at: Optional[float] = None
    half_open_trials: int = 0
    trial_started_at: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CircuitBreakerState":
        return cls(
            state=data.get("state", CLOSED),
            failures=int(data.get("failures", 0)),
            window_started_at=data.get("window_started_at"),
            opened_at=data.get("opened_at"),
            half_open_trials=int(data.get("half_open_trials", 0)),
            trial_started_at=data.get("trial_started_at"),
        )

    @property
    def is_clean(self) -> bool:
        return self.state == CLOSED and self.failures == 0


@dataclass(frozen=True)
class CircuitBreakerStatus:
    """Observability snapshot of a breaker."""

    name: str
    state: str
    is_open: bool
    failure_count: int
    threshold: int
    cooldown_seconds: float
    opened_at: Optional[float]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class CircuitBreaker:
    """Failure-counting guard around a remote dependency.

    Attributes:
        name: Breaker name, used in the Redis key and in logs.
        config: Thresholds.
    """

    KEY_PREFIX = "circuit_breaker"

    def __init__(
        self,
        name: str,
        *,
        config: Optional[CircuitBreakerConfig] = None,
        redis: Optional[RedisClient] = None,
        time_source: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._redis = redis
        self._time = time_source
        self._local_state = CircuitBreakerState()

    @property
    def _key(self) -> str:
        return f"{self.KEY_PREFIX}:{self.name}"

    async def _load(self) -> CircuitBreakerState:
        if self._redis is None:
            return self._local_state
        try:
            raw = await self._redis.get(self._key)
        except RedisError as e:
            logger.warning("Circuit breaker %s using local state: %s", self.name, e)
            return self._local_state
        if not isinstance(raw, dict):
            return CircuitBreakerState()
        return CircuitBreakerState.from_dict(raw)

    async def _save(self, state: CircuitBreakerState) -> None:
        self._local_state = state
        if self._redis is None:
            return
        ttl = int(max(self.config.cooldown_seconds, self.config.window_seconds) * 4) or 60
        try:
            if state.is_clean:
                await self._redis.delete(self._key)
            else:
                await self._redis.set(self._key, asdict(state), expire_seconds=ttl)
        except RedisError as e:
            logger.warning("Circuit breaker %s state not persisted: %s", self.name, e)

    def _transition(self, state: CircuitBreakerState, target: str) -> CircuitBreakerState:
        if state.state != target:
            if target == OPEN:
                logger.critical(
                    "Circuit breaker %s opened after %d failures, cooling down for %ss",
                    self.name,
                    state.failures,
                    self.config.cooldown_seconds,
                )
            else:
                logger.warning(
                    "Circuit breaker %s transition %s -> %s", self.name, state.state, target
                )
        now = self._time()
        if target == OPEN:
            return CircuitBreakerState(OPEN, state.failures, state.window_started_at, now, 0)
        if target == HALF_OPEN:
            return CircuitBreakerState(HALF_OPEN, state.failures, state.window_started_at, state.opened_at, 0)
        return CircuitBreakerState()

    async def allow_request(self) -> bool:
        """Decide whether a remote call may be attempted now."""
        state = await self._load()
        if state.state == OPEN:
            elapsed = self._time() - (state.opened_at or 0.0)
            if elapsed < self.config.cooldown_seconds:
                return False
            state = self._transition(state, HALF_OPEN)

        if state.state == HALF_OPEN:
            now = self._time()
            if state.half_open_trials >= self.config.half_open_trials:
                # A trial that never reported back is given up after another cooldown
                if now - (state.trial_started_at or 0.0) < self.config.cooldown_seconds:
                    return False
                logger.warning("Circuit breaker %s trial call never finished, retrying", self.name)
                state.half_open_trials = 0
            state.half_open_trials += 1
            state.trial_started_at = now
            await self._save(state)

        return True

    async def is_open(self) -> bool:
        """Check whether calls are currently being short-circuited."""
        state = await self._load()
        if state.state != OPEN:
            return False
        return self._time() - (state.opened_at or 0.0) < self.config.cooldown_seconds

    async def record_success(self) -> None:
        """Clear any failure state."""
        state = await self._load()
        if state.is_clean:
            return
        if state.state != CLOSED:
            logger.info("Circuit breaker %s closed", self.name)
        await self._save(self._transition(state, CLOSED))

    async def record_failure(self) -> None:
        """Count a failure, opening the circuit at the threshold."""
        state = await self._load()
        now = self._time()

        if state.state == HALF_OPEN:
            await self._save(self._transition(state, OPEN))
            return

        if state.window_started_at is None or now - state.window_started_at > self.config.window_seconds:
            state.window_started_at = now
            state.failures = 0

        state.failures += 1
        if state.failures >= self.config.failure_threshold:
            state = self._transition(state, OPEN)
        await self._save(state)

    async def reset(self) -> None:
        """Force the circuit closed."""
        await self._save(CircuitBreakerState())

    async def status(self) -> CircuitBreakerStatus:
        """Snapshot the breaker for health endpoints."""
        state = await self._load()
        return CircuitBreakerStatus(
            name=self.name,
            state=state.state,
            is_open=await self.is_open(),
            failure_count=state.failures,
            threshold=self.config.failure_threshold,
            cooldown_seconds=self.config.cooldown_seconds,
            opened_at=state.opened_at,
        )
