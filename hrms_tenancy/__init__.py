"""HRMS tenancy engine.

Per-tenant database provisioning and request-scoped connection routing
for the services of the HR platform.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
