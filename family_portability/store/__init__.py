"""
Relational Store.

Async SQLAlchemy access to the family data graph:
- Pooled read connections and exclusive transactions
- Core table definitions
"""

from family_portability.store.client import (
    PortabilityStore,
    StoreError,
    UnsupportedDialectError,
    get_store,
    insert_ignoring_conflicts,
)
from family_portability.store.tables import metadata

__all__ = [
    "PortabilityStore",
    "StoreError",
    "UnsupportedDialectError",
    "get_store",
    "insert_ignoring_conflicts",
    "metadata",
]
