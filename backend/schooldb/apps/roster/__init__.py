# backend/schooldb/apps/roster/__init__.py
"""
Roster app

Pupils and classes: the school records whose counts are capped by the
plan limits. Importing the app registers its resource counters.
"""

from . import models, schemas, services  # noqa: F401

__all__ = ["models", "schemas", "services"]
