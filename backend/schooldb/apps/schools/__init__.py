# backend/schooldb/apps/schools/__init__.py
"""
Schools app

Responsible for:
- Tenants (schools) and the subscription snapshot stored on each one
- User accounts and their platform/school roles
- Resource counters consumed by plan-limit checks
- Platform-operator endpoints (create, suspend, reinstate schools)

Other apps read and write a school's subscription state only through
`services.get_snapshot` / `services.update_snapshot`.
"""

from . import models, schemas, services  # noqa: F401

__all__ = ["models", "schemas", "services"]
