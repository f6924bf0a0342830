"""
orderBy resolution.

Sort keys are resolved per record first (a relation clause may need a
sub-query), then a stable sort compares clause by clause.

Clause forms:
    {"title": "asc"}
    {"title": {"sort": "desc", "nulls": "first"}}
    {"author": {"name": "asc"}}          to-one relation, recursive
    {"posts": {"_count": "desc"}}        to-many relation child count

Nulls sort last ascending and first descending unless "nulls" says
otherwise, so reversing every direction reverses a tie-free order. Ties
keep scan order.
"""

from __future__ import annotations

import asyncio
from functools import cmp_to_key
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..errors import QueryError
from ..schema.types import RelationKind
from ..store.base import Transaction
from .utils import as_list

if TYPE_CHECKING:
    from .model import EntityEngine

# (value, descending, nulls_first)
SortKey = Tuple[Any, bool, bool]


def normalize_order_by(order_by: Any, entity_name: Optional[str] = None) -> List[Tuple[str, Any]]:
    """Flatten orderBy into (name, spec) pairs, in priority order.

    Raises:
        QueryError: On an empty clause
    """
    pairs = []
    for clause in as_list(order_by):
        if not isinstance(clause, dict) or not clause:
            raise QueryError("Empty orderBy clause", entity_name)
        pairs.extend(clause.items())
    return pairs


def _direction(spec: Any, name: str, entity_name: str) -> Tuple[bool, bool]:
    nulls = None
    if isinstance(spec, dict):
        nulls = spec.get("nulls")
        spec = spec.get("sort")
    if spec not in ("asc", "desc"):
        raise QueryError(f"Invalid sort direction {spec!r} for '{name}'", entity_name)
    if nulls not in (None, "first", "last"):
        raise QueryError(f"Invalid nulls placement {nulls!r} for '{name}'", entity_name)
    descending = spec == "desc"
    nulls_first = descending if nulls is None else nulls == "first"
    return descending, nulls_first


async def resolve_key(
    engine: EntityEngine,
    record: Optional[Dict[str, Any]],
    name: str,
    spec: Any,
    tx: Transaction,
) -> SortKey:
    """Resolve one clause for one record (None for an absent relation)."""
    entity = engine.entity
    field_def = entity.get_field(name)
    if field_def is not None:
        if field_def.is_list:
            raise QueryError(f"Cannot order by list field '{name}'", entity.name)
        descending, nulls_first = _direction(spec, name, entity.name)
        value = record.get(name) if record is not None else None
        return value, descending, nulls_first

    rel = entity.get_relation(name)
    if rel is None:
        raise QueryError(f"Unknown orderBy key '{name}'", entity.name)
    if not isinstance(spec, dict) or not spec:
        raise QueryError(f"Relation orderBy '{name}' expects an object", entity.name)

    target = engine.client.engine(rel.target)
    scope = rel.scope(record) if record is not None else None

    if rel.kind is RelationKind.TO_MANY:
        if set(spec) != {"_count"}:
            raise QueryError(f"To-many orderBy '{name}' only supports _count", entity.name)
        descending, nulls_first = _direction(spec["_count"], name, entity.name)
        count = len(await target._find_raw(scope, None, tx)) if scope is not None else 0
        return count, descending, nulls_first

    sub_name, sub_spec = normalize_order_by(spec, entity.name)[0]
    related = await target._find_first_raw(scope, tx) if scope is not None else None
    return await resolve_key(target, related, sub_name, sub_spec, tx)


def _compare(left: SortKey, right: SortKey) -> int:
    a, descending, nulls_first = left
    b = right[0]
    if a is None and b is None:
        return 0
    if a is None:
        return -1 if nulls_first else 1
    if b is None:
        return 1 if nulls_first else -1
    result = (a > b) - (a < b)
    return -result if descending else result


async def apply_order_by(
    engine: EntityEngine,
    records: List[Dict[str, Any]],
    order_by: Any,
    tx: Transaction,
) -> None:
    """Sort records in place by orderBy."""
    if order_by is None:
        return
    clauses = normalize_order_by(order_by, engine.entity.name)
    keys = await asyncio.gather(
        *(
            asyncio.gather(*(resolve_key(engine, r, name, spec, tx) for name, spec in clauses))
            for r in records
        )
    )

    def compare(left, right) -> int:
        for a, b in zip(left[0], right[0]):
            result = _compare(a, b)
            if result:
                return result
        return 0

    decorated = sorted(zip(keys, records), key=cmp_to_key(compare))
    records[:] = [record for _, record in decorated]
