"""
SQLite record store for kvorm.

This module persists each database to one SQLite file:
- One SQL table per store table, holding the encoded key and record
- One column per secondary index, UNIQUE where the index is unique
- A kvorm_meta table with the schema version and table layouts

Invariants:
    - One SQLite file per database name
    - Readwrite transactions are serialized by an asyncio lock and run
      under BEGIN IMMEDIATE
    - Records round-trip through kvorm.store.codec, so datetimes, bytes
      and decimals come back with their Python types

How to change safely:
    - New table layouts go through the open() upgrade callback
    - Keep WAL mode on when readers and writers share a process

Table schema:
    kvorm_meta:
        - key TEXT PRIMARY KEY ('version' | 'tables')
        - value TEXT (JSON)

    <table>:
        - pk TEXT PRIMARY KEY (encoded key tuple)
        - body TEXT (encoded record)
        - ix_<index> TEXT (encoded index key, NULL when any part is null)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable

from . import codec
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


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _index_column(name: str) -> str:
    return _quote(f"ix_{name}")


def _encode_key(key: Key) -> str:
    return codec.dumps(list(key))


def _decode_key(text: str) -> Key:
    return tuple(codec.loads(text))


class _UpgradeHandle:
    def __init__(self, store: SqliteStore, conn: sqlite3.Connection) -> None:
        self._store = store
        self._conn = conn

    @property
    def table_names(self) -> list[str]:
        return sorted(self._store._specs)

    def create_table(self, spec: TableSpec) -> None:
        if spec.name in self._store._specs:
            raise StoreError(f"Table '{spec.name}' already exists")
        columns = ["pk TEXT PRIMARY KEY", "body TEXT NOT NULL"]
        for index in spec.indexes:
            unique = " UNIQUE" if index.unique else ""
            columns.append(f"{_index_column(index.name)} TEXT{unique}")
        self._conn.execute(f"CREATE TABLE {_quote(spec.name)} ({', '.join(columns)})")
        self._store._specs[spec.name] = spec
        logger.debug(f"Created table {spec.name} (key={spec.key_path})")

    def delete_table(self, name: str) -> None:
        self._conn.execute(f"DROP TABLE IF EXISTS {_quote(name)}")
        self._store._specs.pop(name, None)


class SqliteIndex:
    def __init__(self, table: SqliteTable, name: str) -> None:
        self._table = table
        self._spec = table.spec.get_index(name)

    async def get(self, key: Any) -> dict[str, Any] | None:
        conn = self._table._tx._conn_checked()
        row = conn.execute(
            f"SELECT body FROM {_quote(self._table.spec.name)} "
            f"WHERE {_index_column(self._spec.name)} = ? ORDER BY pk LIMIT 1",
            (_encode_key(as_key(key)),),
        ).fetchone()
        return codec.loads(row["body"]) if row else None


class SqliteTable:
    """Table view bound to a transaction's connection."""

    def __init__(self, tx: SqliteTransaction, spec: TableSpec) -> None:
        self._tx = tx
        self.spec = spec
        self._name = _quote(spec.name)

    def _writable_conn(self) -> sqlite3.Connection:
        conn = self._tx._conn_checked()
        if self._tx.mode is not TransactionMode.READWRITE:
            raise ReadOnlyTransactionError(
                f"Cannot write to '{self.spec.name}' in a readonly transaction"
            )
        return conn

    def _row_values(self, record: dict[str, Any]) -> tuple[Key, list[Any]]:
        key = self.spec.key_of(record)
        values: list[Any] = [_encode_key(key), codec.dumps(record)]
        for index in self.spec.indexes:
            index_key = index.key_of(record)
            values.append(_encode_key(index_key) if index_key is not None else None)
        return key, values

    def _columns(self) -> list[str]:
        return ["pk", "body"] + [_index_column(i.name) for i in self.spec.indexes]

    async def get(self, key: Any) -> dict[str, Any] | None:
        conn = self._tx._conn_checked()
        row = conn.execute(
            f"SELECT body FROM {self._name} WHERE pk = ?",
            (_encode_key(as_key(key)),),
        ).fetchone()
        return codec.loads(row["body"]) if row else None

    async def get_all(self) -> list[dict[str, Any]]:
        conn = self._tx._conn_checked()
        rows = conn.execute(f"SELECT pk, body FROM {self._name}").fetchall()
        decoded = [(_decode_key(row["pk"]), row["body"]) for row in rows]
        decoded.sort(key=lambda item: item[0])
        return [codec.loads(body) for _, body in decoded]

    async def add(self, record: dict[str, Any]) -> Key:
        conn = self._writable_conn()
        key, values = self._row_values(record)
        columns = self._columns()
        placeholders = ", ".join("?" for _ in columns)
        try:
            conn.execute(
                f"INSERT INTO {self._name} ({', '.join(columns)}) VALUES ({placeholders})",
                values,
            )
        except sqlite3.IntegrityError as e:
            raise ConstraintError(f"Insert into '{self.spec.name}' failed: {e}") from e
        return key

    async def put(self, record: dict[str, Any]) -> Key:
        conn = self._writable_conn()
        key, values = self._row_values(record)
        columns = self._columns()
        updates = ", ".join(f"{c} = ?" for c in columns[1:])
        try:
            cursor = conn.execute(
                f"UPDATE {self._name} SET {updates} WHERE pk = ?",
                values[1:] + values[:1],
            )
            if cursor.rowcount == 0:
                placeholders = ", ".join("?" for _ in columns)
                conn.execute(
                    f"INSERT INTO {self._name} ({', '.join(columns)}) VALUES ({placeholders})",
                    values,
                )
        except sqlite3.IntegrityError as e:
            raise ConstraintError(f"Write to '{self.spec.name}' failed: {e}") from e
        return key

    async def delete(self, key: Any) -> None:
        conn = self._writable_conn()
        conn.execute(f"DELETE FROM {self._name} WHERE pk = ?", (_encode_key(as_key(key)),))

    async def last_key(self) -> Key | None:
        conn = self._tx._conn_checked()
        keys = [_decode_key(row["pk"]) for row in conn.execute(f"SELECT pk FROM {self._name}")]
        return max(keys) if keys else None

    def index(self, name: str) -> SqliteIndex:
        return SqliteIndex(self, name)


class SqliteTransaction:
    """Transaction holding one connection from enter to exit."""

    def __init__(self, store: SqliteStore, names: Iterable[str], mode: TransactionMode) -> None:
        self._store = store
        self._names = tuple(sorted(set(names)))
        self.mode = mode
        self._conn: sqlite3.Connection | None = None
        self._aborted = False
        self._locked = False

    @property
    def table_names(self) -> tuple[str, ...]:
        return self._names

    @property
    def aborted(self) -> bool:
        return self._aborted

    def _conn_checked(self) -> sqlite3.Connection:
        if self._aborted:
            raise TransactionAbortedError("Transaction was aborted")
        if self._conn is None:
            raise TransactionAbortedError("Transaction is not active")
        return self._conn

    def table(self, name: str) -> SqliteTable:
        self._conn_checked()
        if name not in self._names:
            raise ScopeError(f"Table '{name}' is not in transaction scope {self._names}")
        return SqliteTable(self, self._store._spec(name))

    def abort(self) -> None:
        if not self._aborted:
            logger.debug(f"Transaction aborted (tables={self._names})")
        self._aborted = True

    async def __aenter__(self) -> SqliteTransaction:
        for name in self._names:
            self._store._spec(name)
        if self.mode is TransactionMode.READWRITE:
            await self._store._write_lock.acquire()
            self._locked = True
        try:
            self._conn = self._store._open_connection()
            self._conn.execute(
                "BEGIN IMMEDIATE" if self.mode is TransactionMode.READWRITE else "BEGIN"
            )
        except Exception:
            self._release()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self._conn is not None:
                if self.mode is TransactionMode.READWRITE and exc_type is None and not self._aborted:
                    self._conn.execute("COMMIT")
                else:
                    self._conn.execute("ROLLBACK")
        finally:
            self._release()

    def _release(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._locked:
            self._store._write_lock.release()
            self._locked = False


class SqliteStore:
    """SQLite-backed implementation of Store.

    Example:
        >>> store = SqliteStore("/var/lib/kvorm")
        >>> await store.open("kvorm", 1, upgrade)
    """

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for SQLite database files
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self.name: str | None = None
        self._specs: dict[str, TableSpec] = {}
        self._version = 0
        self._open = False
        self._write_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def version(self) -> int:
        return self._version

    @property
    def table_names(self) -> list[str]:
        return sorted(self._specs) if self._open else []

    def get_db_path(self, name: str) -> Path:
        """Get database file path for a database name."""
        # Sanitize name to prevent path traversal
        safe_name = "".join(c for c in name if c.isalnum() or c in "-_")
        return self.data_dir / f"{safe_name}.db"

    def _open_connection(self) -> sqlite3.Connection:
        if self.name is None:
            raise StoreClosedError("Store is not open")
        db_path = self.get_db_path(self.name)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
        except Exception:
            conn.close()
            raise
        return conn

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._open_connection()
        try:
            yield conn
        finally:
            conn.close()

    def _spec(self, name: str) -> TableSpec:
        if not self._open:
            raise StoreClosedError("Store is not open")
        spec = self._specs.get(name)
        if spec is None:
            raise StoreError(f"Unknown table '{name}'")
        return spec

    async def open(
        self,
        name: str,
        version: int,
        upgrade: UpgradeCallback | None = None,
    ) -> None:
        self.name = name
        async with self._write_lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute(
                        "CREATE TABLE IF NOT EXISTS kvorm_meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
                    )
                    meta = {
                        row["key"]: json.loads(row["value"])
                        for row in conn.execute("SELECT key, value FROM kvorm_meta")
                    }
                    stored_version = meta.get("version", 0)
                    self._specs = {
                        data["name"]: TableSpec.from_dict(data) for data in meta.get("tables", [])
                    }
                    if stored_version > version:
                        raise StoreError(
                            f"Database '{name}' is at version {stored_version}, newer than {version}"
                        )
                    if stored_version < version:
                        await run_upgrade(upgrade, _UpgradeHandle(self, conn), stored_version, version)
                        conn.execute(
                            "INSERT OR REPLACE INTO kvorm_meta (key, value) VALUES (?, ?)",
                            ("version", json.dumps(version)),
                        )
                        conn.execute(
                            "INSERT OR REPLACE INTO kvorm_meta (key, value) VALUES (?, ?)",
                            ("tables", json.dumps([s.to_dict() for s in self._specs.values()])),
                        )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    self._specs = {}
                    self.name = None
                    raise
        self._version = version
        self._open = True
        logger.info(
            "SqliteStore opened",
            extra={"database": name, "version": version, "path": str(self.get_db_path(name))},
        )

    async def close(self) -> None:
        self._open = False
        self._specs = {}
        logger.debug(f"SqliteStore closed {self.name}")

    def transaction(self, names: Iterable[str], mode: TransactionMode) -> SqliteTransaction:
        if not self._open:
            raise StoreClosedError("Store is not open")
        return SqliteTransaction(self, names, mode)
