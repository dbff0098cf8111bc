# backend/schooldb/__init__.py
"""
Import ORM models from each app so that Alembic and
Base.metadata.create_all() see every table.

The model classes live in schooldb/apps/*/models.py.
"""

from .apps.schools import models as schools_models              # schools + users
from .apps.roster import models as roster_models                # pupils + classes
from .apps.subscriptions import models as subscriptions_models  # payment orders + billing audit
from .apps.apikeys import models as apikeys_models              # external API keys

__all__ = [
    "schools_models",
    "roster_models",
    "subscriptions_models",
    "apikeys_models",
]
