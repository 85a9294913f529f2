# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Clients for other platform services."""

from hrms_tenancy.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStatus,
)
from hrms_tenancy.services.tenant_directory import TenantDirectoryClient, is_uuid

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStatus",
    "TenantDirectoryClient",
    "is_uuid",
]
