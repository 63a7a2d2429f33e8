# backend/trainportal/__init__.py
"""
Import ORM models from each app so that Alembic and
Base.metadata.create_all() see every table.

The model classes themselves live in trainportal/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models          # clients / users
from .apps.courses import models as courses_models            # catalogue, editions, attendance, certificates
from .apps.notifications import models as notifications_models  # inbox, email log, preferences
from .apps.audit import models as audit_models                # audit trail

__all__ = [
    "accounts_models",
    "courses_models",
    "notifications_models",
    "audit_models",
]
