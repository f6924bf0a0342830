"""
Client: entry point holding the store and one engine per entity.

Engines reach each other through the client by entity name, so the client
is the only place that knows every entity.

Example:
    >>> registry = load_schema("schema.yaml")
    >>> async with await create_client(registry) as client:
    ...     user = await client.user.create({"data": {"name": "Ada"}})
    ...     await client["Post"].count({"where": {"authorId": user["id"]}})

Invariants:
    - open() creates one table per entity, plus one unique index per
      non-key unique field, when the store is new or at an older version
    - With shared=True there is at most one client per database name until
      that client is closed
    - Change events reach subscribers only after the transaction holding
      the writes commits
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple, Union

from .config import Settings
from .engine.events import ChangeKind, EventEmitter
from .engine.model import EntityEngine
from .schema.registry import SchemaRegistry
from .store.base import Store, Transaction, TransactionMode, UpgradeHandle, create_store

logger = logging.getLogger(__name__)

# Shared clients by database name
_shared_clients: Dict[str, "Client"] = {}


def snake_case(name: str) -> str:
    """AllFieldScalarTypes -> all_field_scalar_types."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class Client:
    """Holds the registry, the store and the per-entity engines.

    Engines are available as client.engine("User"), client["User"] and
    client.user.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        store: Store,
        settings: Optional[Settings] = None,
        shared: bool = False,
    ) -> None:
        if not registry.frozen:
            registry.freeze()
        self.registry = registry
        self.store = store
        self.settings = settings or Settings()
        self.shared = shared
        self._engines: Dict[str, EntityEngine] = {
            entity.name: EntityEngine(self, entity) for entity in registry
        }
        self._attr_names: Dict[str, str] = {snake_case(name): name for name in self._engines}
        self._pending_events: Dict[Transaction, List[Tuple[EventEmitter, ChangeKind]]] = {}

    def engine(self, name: str) -> EntityEngine:
        """Engine for an entity.

        Raises:
            UnknownEntityError: If no entity has that name
        """
        engine = self._engines.get(name)
        if engine is None:
            self.registry.get(name)
        return engine

    def __getitem__(self, name: str) -> EntityEngine:
        return self.engine(name)

    def __getattr__(self, name: str) -> EntityEngine:
        attr_names = self.__dict__.get("_attr_names", {})
        if name in attr_names:
            return self._engines[attr_names[name]]
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    @property
    def is_open(self) -> bool:
        return self.store.is_open

    async def _upgrade(self, handle: UpgradeHandle, old_version: int, new_version: int) -> None:
        existing = set(handle.table_names)
        for spec in self.registry.table_specs():
            if spec.name not in existing:
                handle.create_table(spec)

    async def open(self) -> None:
        if self.store.is_open:
            return
        await self.store.open(
            self.settings.database_name, self.settings.schema_version, self._upgrade
        )
        logger.info(
            "Client opened",
            extra={
                "database": self.settings.database_name,
                "entities": len(self._engines),
                "fingerprint": self.registry.fingerprint,
            },
        )

    async def close(self) -> None:
        await self.store.close()
        if self.shared and _shared_clients.get(self.settings.database_name) is self:
            del _shared_clients[self.settings.database_name]
        logger.info("Client closed", extra={"database": self.settings.database_name})

    async def __aenter__(self) -> Client:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @asynccontextmanager
    async def transaction(
        self,
        tables: Optional[Iterable[str]] = None,
        mode: Union[str, TransactionMode] = TransactionMode.READWRITE,
    ) -> AsyncIterator[Transaction]:
        """Open a transaction for composing several operations atomically.

        Pass the handle as tx= to each operation. Defaults to every entity
        table. Commits on clean exit; an exception rolls everything back.
        Change notifications for the writes are delivered after the commit.
        """
        names = list(tables) if tables is not None else self.registry.names()
        for name in names:
            self.registry.get(name)
        async with self.open_transaction(names, TransactionMode(mode)) as tx:
            yield tx

    @asynccontextmanager
    async def open_transaction(self, names: Iterable[str], mode: TransactionMode) -> AsyncIterator[Transaction]:
        """Store transaction that holds change events until it commits.

        Events queued with queue_event() are published after a clean exit
        and dropped when the transaction aborts or the block raises.
        """
        tx = self.store.transaction(names, mode)
        self._pending_events[tx] = []
        try:
            async with tx:
                yield tx
        except BaseException:
            dropped = self._pending_events.pop(tx, [])
            if dropped:
                logger.debug(f"Dropped {len(dropped)} change events on rollback")
            raise
        pending = self._pending_events.pop(tx, [])
        if tx.aborted:
            if pending:
                logger.debug(f"Dropped {len(pending)} change events on rollback")
            return
        for emitter, kind in pending:
            await emitter.emit(kind)

    async def queue_event(self, tx: Transaction, emitter: EventEmitter, kind: ChangeKind) -> None:
        """Hold an event until tx commits.

        A transaction this client did not open has no commit hook, so its
        events are published immediately.
        """
        pending = self._pending_events.get(tx)
        if pending is None:
            await emitter.emit(kind)
        else:
            pending.append((emitter, kind))


async def create_client(
    registry: SchemaRegistry,
    store: Optional[Store] = None,
    settings: Optional[Settings] = None,
    shared: bool = False,
) -> Client:
    """Build and open a client.

    Args:
        registry: Entity definitions (frozen here if not yet frozen)
        store: Store backend; built from settings when omitted
        settings: Configuration; read from the environment when omitted
        shared: Reuse one client per database name until it is closed

    Returns:
        An open Client
    """
    settings = settings or Settings()
    if shared:
        existing = _shared_clients.get(settings.database_name)
        if existing is not None:
            return existing
    client = Client(registry, store or create_store(settings), settings, shared=shared)
    if shared:
        _shared_clients[settings.database_name] = client
    try:
        await client.open()
    except Exception:
        if shared:
            _shared_clients.pop(settings.database_name, None)
        raise
    return client
