"""
Relation attachment for read results.

For every relation requested through select or include, one scoped
sub-query per record is issued through the related entity's engine. The
nested select/include/orderBy of the request is passed through; a nested
where on a to-many relation is ANDed with the foreign key scope.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Dict, List

from ..schema.types import RelationDef, RelationKind
from ..store.base import Transaction
from .records import ResultRecord
from .utils import both

if TYPE_CHECKING:
    from .model import EntityEngine


def requested_relations(engine: EntityEngine, query: Dict[str, Any]) -> List[tuple]:
    """(relation, nested query) pairs named truthy in select or include."""
    select = query.get("select") or {}
    include = query.get("include") or {}
    requested = []
    for rel in engine.entity.relations:
        spec = select.get(rel.name) or include.get(rel.name)
        if not spec:
            continue
        requested.append((rel, spec if isinstance(spec, dict) else {}))
    return requested


async def _resolve(
    engine: EntityEngine,
    rel: RelationDef,
    result: ResultRecord,
    nested: Dict[str, Any],
    tx: Transaction,
) -> Any:
    target = engine.client.engine(rel.target)
    scope = rel.scope(result.values)
    if rel.kind is RelationKind.TO_MANY:
        if scope is None:
            return []
        return await target.find_many({**nested, "where": both(nested.get("where"), scope)}, tx=tx)
    if scope is None:
        return None
    sub_query = {k: v for k, v in nested.items() if k in ("select", "include")}
    if rel.kind is RelationKind.TO_ONE_OWNING:
        return await target.find_unique({**sub_query, "where": scope}, tx=tx)
    return await target.find_first({**sub_query, "where": scope}, tx=tx)


async def attach_relations(
    engine: EntityEngine,
    results: List[ResultRecord],
    query: Dict[str, Any],
    tx: Transaction,
) -> None:
    """Attach every requested relation to every result, in place."""
    for rel, nested in requested_relations(engine, query):
        values = await asyncio.gather(*(_resolve(engine, rel, r, nested, tx) for r in results))
        for result, value in zip(results, values):
            result.attach(rel.name, value)
