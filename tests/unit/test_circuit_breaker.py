# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the circuit breaker."""

import logging

import pytest

from hrms_tenancy.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "identity",
        config=CircuitBreakerConfig(failure_threshold=3, cooldown_seconds=60, window_seconds=60),
        time_source=clock,
    )


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_allows_requests_when_closed(self, breaker):
        assert await breaker.allow_request()
        assert not await breaker.is_open()

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        for _ in range(3):
            await breaker.record_failure()

        assert await breaker.is_open()
        assert not await breaker.allow_request()

    @pytest.mark.asyncio
    async def test_opening_is_logged_critical(self, breaker, caplog):
        with caplog.at_level(logging.CRITICAL):
            for _ in range(3):
                await breaker.record_failure()
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    @pytest.mark.asyncio
    async def test_stays_closed_below_threshold(self, breaker):
        await breaker.record_failure()
        await breaker.record_failure()
        assert await breaker.allow_request()

    @pytest.mark.asyncio
    async def test_failures_outside_window_reset_count(self, breaker, clock):
        await breaker.record_failure()
        await breaker.record_failure()
        clock.now += 61
        await breaker.record_failure()
        assert not await breaker.is_open()

    @pytest.mark.asyncio
    async def test_half_open_after_cooldown_allows_one_trial(self, breaker, clock):
        for _ in range(3):
            await breaker.record_failure()
        clock.now += 61

        assert await breaker.allow_request()
        assert not await breaker.allow_request()

    @pytest.mark.asyncio
    async def test_success_in_half_open_closes(self, breaker, clock):
        for _ in range(3):
            await breaker.record_failure()
        clock.now += 61
        await breaker.allow_request()

        await breaker.record_success()

        status = await breaker.status()
        assert status.state == "closed"
        assert status.failure_count == 0
        assert await breaker.allow_request()

    @pytest.mark.asyncio
    async def test_failure_in_half_open_reopens(self, breaker, clock):
        for _ in range(3):
            await breaker.record_failure()
        clock.now += 61
        await breaker.allow_request()

        await breaker.record_failure()

        assert await breaker.is_open()
        assert not await breaker.allow_request()

    @pytest.mark.asyncio
    async def test_abandoned_trial_is_retried_after_cooldown(self, breaker, clock):
        for _ in range(3):
            await breaker.record_failure()
        clock.now += 61
        assert await breaker.allow_request()

        clock.now += 30
        assert not await breaker.allow_request()

        clock.now += 31
        assert await breaker.allow_request()
        assert not await breaker.allow_request()

    @pytest.mark.asyncio
    async def test_abandoned_trial_is_retried_through_redis(self, fake_redis, clock):
        config = CircuitBreakerConfig(failure_threshold=1, cooldown_seconds=60)
        first = CircuitBreaker("identity", config=config, redis=fake_redis, time_source=clock)
        second = CircuitBreaker("identity", config=config, redis=fake_redis, time_source=clock)
        await first.record_failure()
        clock.now += 61
        assert await first.allow_request()

        clock.now += 61

        assert await second.allow_request()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        await breaker.record_failure()
        await breaker.record_failure()
        await breaker.record_success()
        await breaker.record_failure()
        await breaker.record_failure()
        assert await breaker.allow_request()


class TestSharedState:
    @pytest.mark.asyncio
    async def test_state_shared_through_redis(self, fake_redis, clock):
        config = CircuitBreakerConfig(failure_threshold=2, cooldown_seconds=60)
        first = CircuitBreaker("identity", config=config, redis=fake_redis, time_source=clock)
        second = CircuitBreaker("identity", config=config, redis=fake_redis, time_source=clock)

        await first.record_failure()
        await first.record_failure()

        assert await second.is_open()
        assert "circuit_breaker:identity" in fake_redis.data

    @pytest.mark.asyncio
    async def test_closing_deletes_redis_key(self, fake_redis, clock):
        breaker = CircuitBreaker("identity", redis=fake_redis, time_source=clock)
        await breaker.record_failure()
        assert "circuit_breaker:identity" in fake_redis.data

        await breaker.record_success()
        assert "circuit_breaker:identity" not in fake_redis.data

    @pytest.mark.asyncio
    async def test_falls_back_to_local_state_when_redis_fails(self, fake_redis, clock):
        config = CircuitBreakerConfig(failure_threshold=2)
        breaker = CircuitBreaker("identity", config=config, redis=fake_redis, time_source=clock)
        fake_redis.broken = True

        await breaker.record_failure()
        await breaker.record_failure()

        assert await breaker.is_open()

    @pytest.mark.asyncio
    async def test_status_snapshot(self, breaker):
        await breaker.record_failure()
        status = await breaker.status()
        assert status.to_dict()["name"] == "identity"
        assert status.failure_count == 1
        assert status.threshold == 3
        assert status.is_open is False
