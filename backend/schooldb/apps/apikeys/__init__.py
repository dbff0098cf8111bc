# backend/schooldb/apps/apikeys/__init__.py
"""
API keys app

Responsible for:
- Issuing, listing, revoking and deleting per-school API keys
- Authenticating external requests carrying an X-API-Key header
- Per-key request rate limiting
- The external (key-authenticated) API surface
"""

from . import models, schemas, services  # noqa: F401

__all__ = ["models", "schemas", "services"]
