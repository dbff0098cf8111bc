# backend/schooldb/apps/subscriptions/__init__.py
"""
Subscriptions app

Responsible for:
- The per-request subscription guard (trial / active / grace / suspended)
- The payment gateway client (token, callback registration, orders, status)
- The payment order ledger and activation of a school's plan
- Gateway notifications (IPN) and status polling
- Billing audit entries
"""

from . import models, schemas, services  # noqa: F401

__all__ = ["models", "schemas", "services"]
