"""
In-memory record store.

This module provides the default Store backend for:
- Unit and integration tests
- Local development and embedding without files on disk

Invariants:
    - All data is lost on process exit
    - Readwrite transactions on overlapping tables are serialized
    - Readonly transactions see a snapshot taken when they start
    - Stored records never alias caller-owned objects

How to change safely:
    - Keep interface compatible with the Store protocol
    - Keep lock acquisition in sorted table order to avoid deadlocks
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .base import (
    ConstraintError,
    Key,
    ReadOnlyTransactionError,
    ScopeError,
    StoreClosedError,
    StoreError,
    TableSpec,
    TransactionAbortedError,
    TransactionMode,
    UpgradeCallback,
    as_key,
    run_upgrade,
)

logger = logging.getLogger(__name__)


@dataclass
class InMemoryTableData:
    """Committed rows of one table."""
    spec: TableSpec
    rows: Dict[Key, Dict[str, Any]] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@dataclass
class InMemoryDatabase:
    """All tables of one named database."""
    version: int = 0
    tables: Dict[str, InMemoryTableData] = field(default_factory=dict)


class _UpgradeHandle:
    def __init__(self, database: InMemoryDatabase) -> None:
        self._database = database

    @property
    def table_names(self) -> List[str]:
        return sorted(self._database.tables)

    def create_table(self, spec: TableSpec) -> None:
        if spec.name in self._database.tables:
            raise StoreError(f"Table '{spec.name}' already exists")
        self._database.tables[spec.name] = InMemoryTableData(spec=spec)
        logger.debug(f"Created table {spec.name} (key={spec.key_path})")

    def delete_table(self, name: str) -> None:
        self._database.tables.pop(name, None)


class InMemoryIndex:
    def __init__(self, table: InMemoryTable, name: str) -> None:
        self._table = table
        self._spec = table.spec.get_index(name)

    async def get(self, key: Any) -> Optional[Dict[str, Any]]:
        key = as_key(key)
        for row_key in sorted(self._table.rows):
            row = self._table.rows[row_key]
            if self._spec.key_of(row) == key:
                return copy.deepcopy(row)
        return None


class InMemoryTable:
    """Table view bound to a transaction's working rows."""

    def __init__(self, tx: InMemoryTransaction, spec: TableSpec, rows: Dict[Key, Dict[str, Any]]) -> None:
        self._tx = tx
        self.spec = spec
        self.rows = rows

    def _check_writable(self) -> None:
        self._tx._check_active()
        if self._tx.mode is not TransactionMode.READWRITE:
            raise ReadOnlyTransactionError(
                f"Cannot write to '{self.spec.name}' in a readonly transaction"
            )

    def _check_unique(self, key: Key, record: Dict[str, Any]) -> None:
        for index in self.spec.indexes:
            if not index.unique:
                continue
            index_key = index.key_of(record)
            if index_key is None:
                continue
            for other_key, other in self.rows.items():
                if other_key != key and index.key_of(other) == index_key:
                    raise ConstraintError(
                        f"Unique index '{index.name}' on '{self.spec.name}' "
                        f"already holds {index_key!r}"
                    )

    async def get(self, key: Any) -> Optional[Dict[str, Any]]:
        self._tx._check_active()
        row = self.rows.get(as_key(key))
        return copy.deepcopy(row) if row is not None else None

    async def get_all(self) -> List[Dict[str, Any]]:
        self._tx._check_active()
        return [copy.deepcopy(self.rows[key]) for key in sorted(self.rows)]

    async def add(self, record: Dict[str, Any]) -> Key:
        self._check_writable()
        key = self.spec.key_of(record)
        if key in self.rows:
            raise ConstraintError(f"Key {key!r} already exists in '{self.spec.name}'")
        self._check_unique(key, record)
        self.rows[key] = copy.deepcopy(record)
        return key

    async def put(self, record: Dict[str, Any]) -> Key:
        self._check_writable()
        key = self.spec.key_of(record)
        self._check_unique(key, record)
        self.rows[key] = copy.deepcopy(record)
        return key

    async def delete(self, key: Any) -> None:
        self._check_writable()
        self.rows.pop(as_key(key), None)

    async def last_key(self) -> Optional[Key]:
        self._tx._check_active()
        if not self.rows:
            return None
        return max(self.rows)

    def index(self, name: str) -> InMemoryIndex:
        return InMemoryIndex(self, name)


class InMemoryTransaction:
    """Transaction over a working copy of the scoped tables.

    Readwrite transactions hold the scoped table locks from enter to exit
    and swap their working rows in on commit.
    """

    def __init__(self, store: InMemoryStore, names: Iterable[str], mode: TransactionMode) -> None:
        self._store = store
        self._names: Tuple[str, ...] = tuple(sorted(set(names)))
        self.mode = mode
        self._aborted = False
        self._finished = False
        self._working: Dict[str, Dict[Key, Dict[str, Any]]] = {}
        self._held: List[asyncio.Lock] = []
        self._tables: Dict[str, InMemoryTable] = {}

    @property
    def table_names(self) -> Tuple[str, ...]:
        return self._names

    @property
    def aborted(self) -> bool:
        return self._aborted

    def _check_active(self) -> None:
        if self._aborted:
            raise TransactionAbortedError("Transaction was aborted")
        if self._finished:
            raise TransactionAbortedError("Transaction has finished")

    def table(self, name: str) -> InMemoryTable:
        self._check_active()
        if name not in self._names:
            raise ScopeError(f"Table '{name}' is not in transaction scope {self._names}")
        if name not in self._tables:
            data = self._store._table_data(name)
            self._tables[name] = InMemoryTable(self, data.spec, self._working[name])
        return self._tables[name]

    def abort(self) -> None:
        if not self._aborted:
            logger.debug(f"Transaction aborted (tables={self._names})")
        self._aborted = True

    async def __aenter__(self) -> InMemoryTransaction:
        tables = [self._store._table_data(name) for name in self._names]
        if self.mode is TransactionMode.READWRITE:
            for data in tables:
                await data.lock.acquire()
                self._held.append(data.lock)
        for name, data in zip(self._names, tables):
            self._working[name] = dict(data.rows)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self.mode is TransactionMode.READWRITE and exc_type is None and not self._aborted:
                for name in self._names:
                    self._store._table_data(name).rows = self._working[name]
        finally:
            self._finished = True
            for lock in reversed(self._held):
                lock.release()
            self._held.clear()


class InMemoryStore:
    """In-memory implementation of Store.

    Databases are kept per name for the lifetime of the store object, so
    closing and reopening the same name sees the same data.

    Example:
        >>> store = InMemoryStore()
        >>> await store.open("kvorm", 1, upgrade)
    """

    def __init__(self) -> None:
        self._databases: Dict[str, InMemoryDatabase] = {}
        self._current: Optional[InMemoryDatabase] = None
        self.name: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._current is not None

    @property
    def version(self) -> int:
        return self._current.version if self._current is not None else 0

    @property
    def table_names(self) -> List[str]:
        if self._current is None:
            return []
        return sorted(self._current.tables)

    async def open(
        self,
        name: str,
        version: int,
        upgrade: Optional[UpgradeCallback] = None,
    ) -> None:
        database = self._databases.setdefault(name, InMemoryDatabase())
        if database.version > version:
            raise StoreError(
                f"Database '{name}' is at version {database.version}, newer than {version}"
            )
        if database.version < version:
            await run_upgrade(upgrade, _UpgradeHandle(database), database.version, version)
            database.version = version
        self._current = database
        self.name = name
        logger.debug(f"InMemoryStore opened {name} at version {version}")

    async def close(self) -> None:
        self._current = None
        logger.debug(f"InMemoryStore closed {self.name}")

    def transaction(self, names: Iterable[str], mode: TransactionMode) -> InMemoryTransaction:
        if self._current is None:
            raise StoreClosedError("Store is not open")
        return InMemoryTransaction(self, names, mode)

    def _table_data(self, name: str) -> InMemoryTableData:
        if self._current is None:
            raise StoreClosedError("Store is not open")
        data = self._current.tables.get(name)
        if data is None:
            raise StoreError(f"Unknown table '{name}'")
        return data

    # Testing helpers

    def get_row_count(self, name: str) -> int:
        return len(self._table_data(name).rows)
