"""
Base protocol and types for the kvorm record store.

The engine never talks to a concrete database. It talks to a Store: a
set of named tables of records addressed by primary-key tuples, read and
written through scoped transactions.

Invariants:
    - Keys are tuples of the values at a table's key_path
    - A transaction only touches the tables it was opened with
    - A readwrite transaction commits on clean exit of its context and
      rolls back on exception or after abort()
    - Unique indexes ignore records whose indexed value is null
    - get_all() returns records in ascending key order

How to change safely:
    - Protocol changes require updating every backend
    - New table layouts go through the upgrade callback of open()
      together with a version bump
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)
import logging

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

Key = Tuple[Any, ...]


class StoreError(Exception):
    """Base exception for store operations."""
    pass


class ConstraintError(StoreError):
    """Primary key or unique index violation."""
    pass


class ScopeError(StoreError):
    """Table accessed outside the transaction's declared scope."""
    pass


class ReadOnlyTransactionError(StoreError):
    """Write attempted through a readonly transaction."""
    pass


class TransactionAbortedError(StoreError):
    """Operation attempted on an aborted or finished transaction."""
    pass


class StoreClosedError(StoreError):
    """Store used before open() or after close()."""
    pass


class TransactionMode(Enum):
    READONLY = "readonly"
    READWRITE = "readwrite"


@dataclass(frozen=True)
class IndexSpec:
    """A secondary index over one or more record fields.

    Attributes:
        name: Index name, unique within the table
        key_path: Fields whose values form the index key
        unique: Whether two records may share a non-null index key
    """
    name: str
    key_path: Tuple[str, ...]
    unique: bool = True

    def key_of(self, record: Dict[str, Any]) -> Optional[Key]:
        """Index key of a record, or None if any part is null."""
        values = tuple(record.get(name) for name in self.key_path)
        if any(value is None for value in values):
            return None
        return values

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "key_path": list(self.key_path), "unique": self.unique}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> IndexSpec:
        return cls(name=data["name"], key_path=tuple(data["key_path"]), unique=data.get("unique", True))


@dataclass(frozen=True)
class TableSpec:
    """Layout of one table.

    Attributes:
        name: Table name
        key_path: Fields whose values form the primary key
        indexes: Secondary indexes
    """
    name: str
    key_path: Tuple[str, ...]
    indexes: Tuple[IndexSpec, ...] = field(default_factory=tuple)

    def key_of(self, record: Dict[str, Any]) -> Key:
        """Primary key of a record.

        Raises:
            ConstraintError: If a key field is missing or null
        """
        values = tuple(record.get(name) for name in self.key_path)
        if any(value is None for value in values):
            raise ConstraintError(f"Record for '{self.name}' has no complete key {self.key_path}")
        return values

    def get_index(self, name: str) -> IndexSpec:
        for index in self.indexes:
            if index.name == name:
                return index
        raise StoreError(f"Table '{self.name}' has no index '{name}'")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "key_path": list(self.key_path),
            "indexes": [index.to_dict() for index in self.indexes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TableSpec:
        return cls(
            name=data["name"],
            key_path=tuple(data["key_path"]),
            indexes=tuple(IndexSpec.from_dict(i) for i in data.get("indexes", [])),
        )


def as_key(value: Any) -> Key:
    """Normalize a scalar or sequence into a key tuple."""
    if isinstance(value, tuple):
        return value
    if isinstance(value, list):
        return tuple(value)
    return (value,)


@runtime_checkable
class StoreIndex(Protocol):
    """Read access to a secondary index inside a transaction."""

    @abstractmethod
    async def get(self, key: Any) -> Optional[Dict[str, Any]]:
        """Record whose index key equals key, or None."""
        ...


@runtime_checkable
class StoreTable(Protocol):
    """Record access to one table inside a transaction.

    Records handed in and out are copies; mutating them never changes
    stored data.
    """

    @abstractmethod
    async def get(self, key: Any) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_all(self) -> List[Dict[str, Any]]:
        """All records in ascending key order."""
        ...

    @abstractmethod
    async def add(self, record: Dict[str, Any]) -> Key:
        """Insert a record.

        Raises:
            ConstraintError: If the key exists or a unique index clashes
        """
        ...

    @abstractmethod
    async def put(self, record: Dict[str, Any]) -> Key:
        """Insert or replace a record by key.

        Raises:
            ConstraintError: If a unique index clashes with another record
        """
        ...

    @abstractmethod
    async def delete(self, key: Any) -> None:
        ...

    @abstractmethod
    async def last_key(self) -> Optional[Key]:
        """Greatest key in the table, or None when empty."""
        ...

    @abstractmethod
    def index(self, name: str) -> StoreIndex:
        ...


@runtime_checkable
class Transaction(Protocol):
    """A unit of work over a fixed set of tables.

    Used as an async context manager:

        >>> async with store.transaction(["User", "Post"], TransactionMode.READWRITE) as tx:
        ...     await tx.table("User").put({"id": 1, "name": "Ada"})
    """

    mode: TransactionMode

    @property
    @abstractmethod
    def table_names(self) -> Tuple[str, ...]:
        ...

    @property
    @abstractmethod
    def aborted(self) -> bool:
        ...

    @abstractmethod
    def table(self, name: str) -> StoreTable:
        """Access a table.

        Raises:
            ScopeError: If name is not in this transaction's scope
            TransactionAbortedError: If the transaction was aborted
        """
        ...

    @abstractmethod
    def abort(self) -> None:
        """Mark the transaction aborted; its writes are discarded on exit."""
        ...

    async def __aenter__(self) -> Transaction:
        ...

    async def __aexit__(self, exc_type, exc, tb) -> Optional[bool]:
        ...


@runtime_checkable
class UpgradeHandle(Protocol):
    """Handle given to the upgrade callback of Store.open()."""

    @property
    @abstractmethod
    def table_names(self) -> List[str]:
        ...

    @abstractmethod
    def create_table(self, spec: TableSpec) -> None:
        ...

    @abstractmethod
    def delete_table(self, name: str) -> None:
        ...


UpgradeCallback = Callable[[UpgradeHandle, int, int], Optional[Awaitable[None]]]


@runtime_checkable
class Store(Protocol):
    """Protocol for record store backends.

    Example:
        >>> store = InMemoryStore()
        >>> await store.open("kvorm", 1, upgrade)
        >>> async with store.transaction(["User"], TransactionMode.READONLY) as tx:
        ...     users = await tx.table("User").get_all()
    """

    @abstractmethod
    async def open(
        self,
        name: str,
        version: int,
        upgrade: Optional[UpgradeCallback] = None,
    ) -> None:
        """Open the named database at a schema version.

        When the stored version is lower than version, upgrade is called
        with (handle, old_version, new_version) before open returns.

        Raises:
            StoreError: If the stored version is newer than version
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    def transaction(self, names: Iterable[str], mode: TransactionMode) -> Transaction:
        ...

    @property
    @abstractmethod
    def table_names(self) -> List[str]:
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...


async def run_upgrade(
    upgrade: Optional[UpgradeCallback],
    handle: UpgradeHandle,
    old_version: int,
    new_version: int,
) -> None:
    """Invoke an upgrade callback, awaiting it when it is a coroutine."""
    if upgrade is None:
        return
    logger.info(
        "Upgrading store schema",
        extra={"old_version": old_version, "new_version": new_version},
    )
    result = upgrade(handle, old_version, new_version)
    if result is not None:
        await result


def create_store(settings: "Settings") -> Store:
    """Factory function to create a store from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryStore
    from .sqlite import SqliteStore

    if settings.store_backend == StoreBackend.MEMORY:
        return InMemoryStore()
    elif settings.store_backend == StoreBackend.SQLITE:
        return SqliteStore(
            data_dir=settings.data_dir,
            wal_mode=settings.sqlite_wal_mode,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
            cache_size_pages=settings.sqlite_cache_size_pages,
        )
    else:
        raise ValueError(f"Unsupported store backend: {settings.store_backend}")
