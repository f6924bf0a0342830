"""
kvorm: an embedded, schema-driven query engine over a key-value record store.

Architecture:
    Client
      -> EntityEngine (one per entity, generic over EntityDef)
           -> filters / relations / ordering / scope / defaults / writes
           -> Store transaction (InMemoryStore or SqliteStore)

Queries use a nested-object payload with where, orderBy, select, include
and, for writes, data:

    >>> client = await create_client(registry)
    >>> await client.user.create({
    ...     "data": {"name": "Ada", "posts": {"create": [{"title": "Hi"}]}},
    ...     "include": {"posts": True},
    ... })
"""

from ._version import __version__
from .client import Client, create_client
from .config import Settings, StoreBackend
from .engine import ChangeEvent, ChangeKind, EntityEngine
from .errors import (
    KvormError,
    QueryError,
    RecordNotFoundError,
    SchemaError,
    UnknownEntityError,
    UnknownFieldError,
    UnsupportedOperationError,
    ValidationError,
)
from .log import setup_logging
from .schema import (
    EntityDef,
    FieldDef,
    FieldKind,
    RelationDef,
    RelationKind,
    SchemaRegistry,
    field,
    load_schema,
    relation,
)
from .store import InMemoryStore, SqliteStore, TransactionMode, create_store

__all__ = [
    "__version__",
    # Client
    "Client",
    "create_client",
    "EntityEngine",
    "ChangeEvent",
    "ChangeKind",
    # Config
    "Settings",
    "StoreBackend",
    "setup_logging",
    # Schema
    "EntityDef",
    "FieldDef",
    "FieldKind",
    "RelationDef",
    "RelationKind",
    "SchemaRegistry",
    "field",
    "relation",
    "load_schema",
    # Store
    "InMemoryStore",
    "SqliteStore",
    "TransactionMode",
    "create_store",
    # Errors
    "KvormError",
    "RecordNotFoundError",
    "ValidationError",
    "UnknownFieldError",
    "UnsupportedOperationError",
    "QueryError",
    "SchemaError",
    "UnknownEntityError",
]
