"""
Per-entity query engine.

One EntityEngine exists per registered entity. It is generic: everything
entity-specific comes from its EntityDef and the kind capability table,
and related entities are reached through the owning client by name.

Call protocol:
    1. Reuse the caller's transaction (tx=) or open one over the tables
       the query touches, computed by kvorm.engine.scope
    2. Filter, attach relations, order
    3. Mutate or project, and return plain mappings

Invariants:
    - Any KvormError or StoreError raised inside a call aborts the active
      transaction before it propagates
    - Change notifications are queued on the transaction and fire only
      after it commits; a rollback drops them

Example:
    >>> user = await client.user.create({"data": {"name": "Ada"}})
    >>> await client.post.find_many({"where": {"authorId": user["id"]}})
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Iterable, List, Optional, Union

from ..errors import KvormError, QueryError, RecordNotFoundError
from ..schema.types import EntityDef
from ..store.base import StoreError, Transaction, TransactionMode
from . import scope, writes
from .capabilities import coerce_value
from .events import Callback, ChangeKind, EventEmitter, KindSpec
from .filters import apply_where
from .ordering import apply_order_by
from .records import ResultRecord
from .relations import attach_relations
from .utils import as_list

if TYPE_CHECKING:
    from ..client import Client

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Query = Dict[str, Any]


class EntityEngine:
    """Async CRUD operations for one entity.

    Attributes:
        client: Owning client (resolves related engines and the store)
        entity: Entity definition
        name: Entity (and table) name
    """

    def __init__(self, client: Client, entity: EntityDef) -> None:
        self.client = client
        self.entity = entity
        self.name = entity.name
        self.events = EventEmitter(entity.name)

    def __repr__(self) -> str:
        return f"EntityEngine({self.name!r})"

    @property
    def registry(self):
        return self.client.registry

    # Transactions

    @asynccontextmanager
    async def _transaction(
        self,
        tables: Iterable[str],
        mode: TransactionMode,
        tx: Optional[Transaction],
    ) -> AsyncIterator[Transaction]:
        if tx is not None:
            try:
                yield tx
            except (KvormError, StoreError):
                tx.abort()
                raise
            return

        async with self.client.open_transaction(tables, mode) as new_tx:
            try:
                yield new_tx
            except (KvormError, StoreError) as e:
                logger.debug(
                    "Aborting transaction",
                    extra={"entity": self.name, "tables": list(new_tx.table_names), "error": str(e)},
                )
                new_tx.abort()
                raise

    # Raw reads (unprojected stored records)

    async def _find_raw(self, where: Any, order_by: Any, tx: Transaction) -> List[Record]:
        rows = await tx.table(self.name).get_all()
        rows = await apply_where(self, rows, where, tx)
        if order_by is not None:
            await apply_order_by(self, rows, order_by, tx)
        return rows

    async def _find_first_raw(self, where: Any, tx: Transaction) -> Optional[Record]:
        rows = await self._find_raw(where, None, tx)
        return rows[0] if rows else None

    async def _exists(self, where: Any, tx: Transaction) -> bool:
        return await self._find_first_raw(where, tx) is not None

    async def _find_unique_raw(self, where: Dict[str, Any], tx: Transaction) -> Optional[Record]:
        """Look a record up by key, compound key or unique index, then apply where.

        Raises:
            QueryError: If where holds no unique selector
        """
        if not isinstance(where, dict):
            raise QueryError(f"find_unique on '{self.name}' expects a where object", self.name)
        entity = self.entity
        table = tx.table(self.name)
        compound = entity.compound_key_name

        if compound is not None and isinstance(where.get(compound), dict):
            selector = where[compound]
            key = tuple(
                coerce_value(entity.get_field(n), selector.get(n), self.name)
                for n in entity.key_path
            )
            row = await table.get(key)
        elif all(_is_plain(where.get(n)) for n in entity.key_path):
            key = tuple(
                coerce_value(entity.get_field(n), where[n], self.name) for n in entity.key_path
            )
            row = await table.get(key)
        else:
            for f in entity.unique_fields:
                if _is_plain(where.get(f.name)):
                    value = coerce_value(f, where[f.name], self.name)
                    row = await table.index(entity.index_name(f.name)).get((value,))
                    break
            else:
                raise QueryError(
                    f"find_unique on '{self.name}' requires a key or unique field selector",
                    self.name,
                )

        if row is None:
            return None
        matched = await apply_where(self, [row], where, tx)
        return matched[0] if matched else None

    async def _project(self, rows: List[Record], query: Query, tx: Transaction) -> List[Record]:
        results = [ResultRecord(self.entity, row) for row in rows]
        await attach_relations(self, results, query, tx)
        select = query.get("select")
        return [r.to_dict(select) for r in results]

    # Reads

    async def find_many(self, query: Optional[Query] = None, *, tx: Optional[Transaction] = None) -> List[Record]:
        query = query or {}
        tables = scope.tables_for_find(self.registry, self.name, query)
        async with self._transaction(tables, TransactionMode.READONLY, tx) as tx:
            rows = await self._find_raw(query.get("where"), query.get("orderBy"), tx)
            return await self._project(rows, query, tx)

    async def find_first(self, query: Optional[Query] = None, *, tx: Optional[Transaction] = None) -> Optional[Record]:
        query = query or {}
        tables = scope.tables_for_find(self.registry, self.name, query)
        async with self._transaction(tables, TransactionMode.READONLY, tx) as tx:
            rows = await self._find_raw(query.get("where"), query.get("orderBy"), tx)
            if not rows:
                return None
            return (await self._project(rows[:1], query, tx))[0]

    async def find_first_or_throw(self, query: Optional[Query] = None, *, tx: Optional[Transaction] = None) -> Record:
        query = query or {}
        tables = scope.tables_for_find(self.registry, self.name, query)
        async with self._transaction(tables, TransactionMode.READONLY, tx) as tx:
            record = await self.find_first(query, tx=tx)
            if record is None:
                raise RecordNotFoundError(self.name, query.get("where"))
            return record

    async def find_unique(self, query: Query, *, tx: Optional[Transaction] = None) -> Optional[Record]:
        tables = scope.tables_for_find(self.registry, self.name, query)
        async with self._transaction(tables, TransactionMode.READONLY, tx) as tx:
            row = await self._find_unique_raw(query.get("where"), tx)
            if row is None:
                return None
            return (await self._project([row], query, tx))[0]

    async def find_unique_or_throw(self, query: Query, *, tx: Optional[Transaction] = None) -> Record:
        tables = scope.tables_for_find(self.registry, self.name, query)
        async with self._transaction(tables, TransactionMode.READONLY, tx) as tx:
            record = await self.find_unique(query, tx=tx)
            if record is None:
                raise RecordNotFoundError(self.name, query.get("where"))
            return record

    async def count(
        self, query: Optional[Query] = None, *, tx: Optional[Transaction] = None
    ) -> Union[int, Dict[str, int]]:
        """Count matching records.

        With a select object, returns {field: count} where "_all" counts
        matching records and a field name counts its non-null values among
        them.
        """
        query = query or {}
        where = query.get("where")
        tables = scope.tables_for_find(self.registry, self.name, {"where": where})
        async with self._transaction(tables, TransactionMode.READONLY, tx) as tx:
            rows = await self._find_raw(where, None, tx)
            select = query.get("select")
            if not isinstance(select, dict):
                return len(rows)
            result: Dict[str, int] = {}
            for key, wanted in select.items():
                if not wanted:
                    continue
                if key == "_all":
                    result[key] = len(rows)
                elif self.entity.get_field(key) is not None:
                    result[key] = sum(1 for r in rows if r.get(key) is not None)
                else:
                    raise QueryError(f"Cannot count unknown field '{key}'", self.name)
            return result

    # Writes

    async def create(self, query: Query, *, tx: Optional[Transaction] = None) -> Record:
        data = query.get("data") or {}
        tables = scope.tables_for_create_query(self.registry, self.name, {**query, "data": data})
        async with self._transaction(tables, TransactionMode.READWRITE, tx) as tx:
            writes.reject_connect_or_create(self, data)
            key = await writes.create_record(self, data, tx)
            row = await tx.table(self.name).get(key)
            result = (await self._project([row], query, tx))[0]
            await self._notify(tx, ChangeKind.CREATE)
        return result

    async def _create_many(self, query: Query, tx: Optional[Transaction]) -> tuple:
        rows = as_list(query.get("data"))
        tables = scope.tables_for_create_query(self.registry, self.name, query)
        async with self._transaction(tables, TransactionMode.READWRITE, tx) as tx:
            for data in rows:
                writes.reject_nested_writes(self, data, "create_many")
            keys = await writes.create_rows(self, rows, bool(query.get("skipDuplicates")), tx)
            table = tx.table(self.name)
            created = [await table.get(key) for key in keys]
            projected = await self._project(created, query, tx) if "select" in query else None
            if keys:
                logger.debug(f"Created {len(keys)} {self.name} records")
                await self._notify(tx, ChangeKind.CREATE)
        return created, projected

    async def create_many(self, query: Query, *, tx: Optional[Transaction] = None) -> Dict[str, int]:
        created, _ = await self._create_many({k: v for k, v in query.items() if k != "select"}, tx)
        return {"count": len(created)}

    async def create_many_and_return(self, query: Query, *, tx: Optional[Transaction] = None) -> List[Record]:
        created, projected = await self._create_many({"select": None, **query}, tx)
        return projected

    async def update(self, query: Query, *, tx: Optional[Transaction] = None) -> Record:
        data = query.get("data") or {}
        tables = scope.tables_for_update(self.registry, self.name, query)
        async with self._transaction(tables, TransactionMode.READWRITE, tx) as tx:
            writes.reject_nested_writes(self, data, "update")
            current = await self._find_unique_raw(query.get("where"), tx)
            if current is None:
                raise RecordNotFoundError(self.name, query.get("where"))
            updated = writes.apply_update(self, current, data)
            key = await tx.table(self.name).put(updated)
            row = await tx.table(self.name).get(key)
            result = (await self._project([row], query, tx))[0]
            await self._notify(tx, ChangeKind.UPDATE)
        return result

    async def delete(self, query: Query, *, tx: Optional[Transaction] = None) -> Record:
        tables = scope.tables_for_delete(self.registry, self.name, query)
        async with self._transaction(tables, TransactionMode.READWRITE, tx) as tx:
            row = await self._find_unique_raw(query.get("where"), tx)
            if row is None:
                raise RecordNotFoundError(self.name, query.get("where"))
            result = (await self._project([row], query, tx))[0]
            await writes.delete_record(self, row, tx)
            await self._notify(tx, ChangeKind.DELETE)
        return result

    async def delete_many(self, query: Optional[Query] = None, *, tx: Optional[Transaction] = None) -> Dict[str, int]:
        query = query or {}
        tables = scope.tables_for_delete(self.registry, self.name, {"where": query.get("where")})
        count = 0
        async with self._transaction(tables, TransactionMode.READWRITE, tx) as tx:
            table = tx.table(self.name)
            for row in await self._find_raw(query.get("where"), None, tx):
                # Already removed by an earlier cascade in this call
                if await table.get(self.entity.key_of(row)) is None:
                    continue
                await writes.delete_record(self, row, tx)
                count += 1
            if count:
                await self._notify(tx, ChangeKind.DELETE)
        return {"count": count}

    # Notifications

    async def _notify(self, tx: Transaction, kind: ChangeKind) -> None:
        await self.client.queue_event(tx, self.events, kind)

    def subscribe(self, kinds: KindSpec, callback: Callback) -> None:
        self.events.subscribe(kinds, callback)

    def unsubscribe(self, kinds: KindSpec, callback: Callback) -> None:
        self.events.unsubscribe(kinds, callback)


def _is_plain(value: Any) -> bool:
    return value is not None and not isinstance(value, (dict, list))
