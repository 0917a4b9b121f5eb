"""Database library for the reconciliation engine.

``metadata`` is the target Alembic migrates against; ``db.client`` owns engines
and sessions, ``db.models.finance`` the ``rc_*`` tables.
"""

from __future__ import annotations

from .models.finance import Base, RcMerchantMemory, RcTransaction

metadata = Base.metadata

__all__ = ["Base", "RcMerchantMemory", "RcTransaction", "metadata"]
