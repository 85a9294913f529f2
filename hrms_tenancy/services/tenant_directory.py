# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant directory client.

Resolves tenant identifiers (UUID or domain) to tenant metadata through the
identity service's internal API. Lookups are cached in Redis and guarded by
a circuit breaker; while the identity service is unreachable, a longer-lived
fallback copy is served instead.

This is a best-effort read path: transient failures never raise, they
degrade to the fallback copy or to ``None``.

Example:
    directory = TenantDirectoryClient(settings, cache=get_redis())
    tenant = await directory.resolve("acme.example.com")
    if tenant is None:
        ...
"""

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from hrms_tenancy.infrastructure.cache.redis_client import RedisClient, RedisError
from hrms_tenancy.models.tenant import Tenant
from hrms_tenancy.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStatus,
)

if TYPE_CHECKING:
    from hrms_tenancy.core.config.settings import Settings

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

SECRET_HEADER = "X-Internal-Service-Secret"


def is_uuid(identifier: str) -> bool:
    """Check whether an identifier is UUID-shaped."""
    return bool(UUID_PATTERN.match(identifier))


class TenantDirectoryClient:
    """Cached, circuit-broken client for the identity authority.

    Cache layout:
        tenant_info_{id} / tenant_domain_{domain}: primary copy (short TTL).
        tenant_fallback_{id} / tenant_fallback_domain_{domain}: copy served
        while the authority is unavailable (long TTL).

    Attributes:
        breaker: Circuit breaker guarding the HTTP calls.
    """

    def __init__(
        self,
        settings: "Settings",
        cache: Optional[RedisClient] = None,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Application settings.
            cache: Redis client for tenant and breaker state. Caching is
                skipped when None.
            breaker: Circuit breaker; built from settings when None.
            transport: Optional httpx transport (used by tests).
        """
        self._settings = settings.directory
        self._cache = cache
        self.breaker = breaker or CircuitBreaker(
            "tenant_directory",
            config=CircuitBreakerConfig(
                failure_threshold=self._settings.breaker_threshold,
                cooldown_seconds=self._settings.breaker_cooldown,
                window_seconds=self._settings.breaker_cooldown,
            ),
            redis=cache,
        )
        self._client = httpx.AsyncClient(
            base_url=self._settings.base_url,
            headers={
                SECRET_HEADER: self._settings.internal_secret.get_secret_value(),
                "Accept": "application/json",
            },
            timeout=self._settings.timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    # ========== Lookups ==========

    async def resolve(self, identifier: str) -> Optional[Tenant]:
        """Resolve a UUID or a domain to a tenant.

        Returns:
            The tenant, or None when unknown or unavailable.
        """
        identifier = (identifier or "").strip()
        if not identifier:
            return None
        if is_uuid(identifier):
            return await self.get_tenant(identifier)
        return await self.get_tenant_by_domain(identifier)

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        """Look a tenant up by id."""
        cached = await self._cache_get(f"tenant_info_{tenant_id}")
        if cached is not None:
            return cached

        return await self._fetch(
            f"/tenants/{quote(tenant_id, safe='')}",
            fallback_key=f"tenant_fallback_{tenant_id}",
        )

    async def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]:
        """Look a tenant up by domain."""
        domain = domain.lower()
        cached = await self._cache_get(f"tenant_domain_{domain}")
        if cached is not None:
            return cached

        return await self._fetch(
            f"/tenants/domain/{quote(domain, safe='')}",
            fallback_key=f"tenant_fallback_domain_{domain}",
        )

    async def is_tenant_active(self, tenant_id: str) -> bool:
        """Check whether a tenant exists and is active."""
        tenant = await self.get_tenant(tenant_id)
        return tenant is not None and tenant.is_active

    # ========== Cache maintenance ==========

    async def remember(self, tenant: Tenant) -> None:
        """Cache a tenant by id and by domain, primary and fallback."""
        if self._cache is None:
            return
        data = tenant.model_dump()
        ttl = self._settings.cache_ttl
        fallback_ttl = self._settings.fallback_ttl
        try:
            await self._cache.set(f"tenant_info_{tenant.id}", data, expire_seconds=ttl)
            await self._cache.set(f"tenant_fallback_{tenant.id}", data, expire_seconds=fallback_ttl)
            if tenant.domain:
                domain = tenant.domain.lower()
                await self._cache.set(f"tenant_domain_{domain}", data, expire_seconds=ttl)
                await self._cache.set(
                    f"tenant_fallback_domain_{domain}", data, expire_seconds=fallback_ttl
                )
        except RedisError as e:
            logger.warning("Failed to cache tenant %s: %s", tenant.id, e)

    async def invalidate(self, tenant_id: str, domain: Optional[str] = None) -> None:
        """Drop every cached copy of a tenant."""
        if self._cache is None:
            return
        keys = [f"tenant_info_{tenant_id}", f"tenant_fallback_{tenant_id}"]
        if domain:
            domain = domain.lower()
            keys += [f"tenant_domain_{domain}", f"tenant_fallback_domain_{domain}"]
        try:
            await self._cache.delete(*keys)
        except RedisError as e:
            logger.warning("Failed to invalidate tenant cache %s: %s", tenant_id, e)

    async def circuit_breaker_status(self) -> CircuitBreakerStatus:
        """Expose breaker state for health endpoints."""
        return await self.breaker.status()

    # ========== Internals ==========

    async def _cache_get(self, key: str) -> Optional[Tenant]:
        if self._cache is None:
            return None
        try:
            data = await self._cache.get(key)
        except RedisError as e:
            logger.warning("Tenant cache read failed for %s: %s", key, e)
            return None
        return self._parse(data)

    def _parse(self, data: Any) -> Optional[Tenant]:
        if not isinstance(data, dict):
            return None
        try:
            return Tenant.model_validate(data)
        except ValidationError as e:
            logger.warning("Discarding malformed tenant payload: %s", e)
            return None

    async def _fallback(self, fallback_key: str) -> Optional[Tenant]:
        tenant = await self._cache_get(fallback_key)
        if tenant is not None:
            logger.info("Serving tenant %s from fallback cache", tenant.id)
        return tenant

    async def _get(self, path: str) -> httpx.Response:
        attempts = self._settings.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._client.get(path)
            except httpx.TransportError as e:
                if attempt >= attempts:
                    raise
                logger.debug("Retrying %s after transport error (%d/%d): %s", path, attempt, attempts, e)
                await asyncio.sleep(self._settings.retry_backoff)
        raise RuntimeError("unreachable")

    async def _fetch(self, path: str, fallback_key: str) -> Optional[Tenant]:
        if not await self.breaker.allow_request():
            logger.warning("Tenant directory circuit open, skipping %s", path)
            return await self._fallback(fallback_key)

        try:
            response = await self._get(path)
        except httpx.HTTPError as e:
            logger.warning("Tenant directory request %s failed: %s", path, e)
            await self.breaker.record_failure()
            return await self._fallback(fallback_key)

        if response.status_code == 404:
            await self.breaker.record_success()
            return None

        if response.is_error:
            logger.warning(
                "Tenant directory returned %d for %s", response.status_code, path
            )
            await self.breaker.record_failure()
            return await self._fallback(fallback_key)

        try:
            body = response.json()
        except ValueError as e:
            logger.warning("Tenant directory returned invalid JSON for %s: %s", path, e)
            await self.breaker.record_failure()
            return await self._fallback(fallback_key)

        await self.breaker.record_success()

        if not isinstance(body, dict) or not body.get("success"):
            return None

        tenant = self._parse(body.get("data"))
        if tenant is not None:
            await self.remember(tenant)
        return tenant
