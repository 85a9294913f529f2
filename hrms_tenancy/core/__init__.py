# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package for the tenancy engine.

This package contains the pieces with no I/O:
- config: Application configuration and settings
- naming: Tenant database and registry key derivation
- exceptions: Typed error taxonomy
"""
