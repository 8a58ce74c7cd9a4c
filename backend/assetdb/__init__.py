# backend/assetdb/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- The package exposes a clear surface.

The actual model classes are kept in assetdb/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models    # users / rights
from .apps.assets import models as assets_models        # sites + asset slots
from .apps.tickets import models as tickets_models      # tickets + activity feed
from .apps.stock import models as stock_models          # stock movement ledger
from .apps.audit import models as audit_models          # generic audit trail
from .apps.rma import models as rma_models              # RMA cases + timeline

__all__ = [
    "accounts_models",
    "assets_models",
    "tickets_models",
    "stock_models",
    "audit_models",
    "rma_models",
]
