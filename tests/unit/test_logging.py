# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for logging configuration."""

import logging

import structlog

from hrms_tenancy.utils.logging import bind_context, clear_context, get_logger, setup_logging


def test_setup_logging_quiets_noisy_loggers(settings):
    setup_logging(settings)

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("hrms_tenancy").level == logging.INFO
    assert get_logger(__name__) is not None


def test_bound_tenant_fields_are_cleared():
    bind_context(tenant_id="11111111-1111-1111-1111-111111111111", service="employee")
    assert structlog.contextvars.get_contextvars()["service"] == "employee"

    clear_context()

    assert structlog.contextvars.get_contextvars() == {}
