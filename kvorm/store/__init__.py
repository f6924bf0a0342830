"""
Record store backends for kvorm.

Backends:
- InMemoryStore: process-local, for tests and embedding
- SqliteStore: one SQLite file per database

Both implement the Store protocol from kvorm.store.base.
"""

from .base import (
    ConstraintError,
    IndexSpec,
    ReadOnlyTransactionError,
    ScopeError,
    Store,
    StoreClosedError,
    StoreError,
    StoreIndex,
    StoreTable,
    TableSpec,
    Transaction,
    TransactionAbortedError,
    TransactionMode,
    UpgradeHandle,
    create_store,
)
from .memory import InMemoryStore
from .sqlite import SqliteStore

__all__ = [
    # Protocol
    "Store",
    "StoreTable",
    "StoreIndex",
    "Transaction",
    "TransactionMode",
    "UpgradeHandle",
    "TableSpec",
    "IndexSpec",
    "create_store",
    # Backends
    "InMemoryStore",
    "SqliteStore",
    # Errors
    "StoreError",
    "ConstraintError",
    "ScopeError",
    "ReadOnlyTransactionError",
    "TransactionAbortedError",
    "StoreClosedError",
]
