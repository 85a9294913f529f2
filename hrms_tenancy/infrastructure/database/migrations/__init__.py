# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database migrations package.

- central: Tables of the service's own database (event outbox)
- tenant: Tables created inside every tenant database
"""
