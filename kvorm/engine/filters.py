"""
Where-clause evaluation.

apply_where() narrows a list of stored records to those matching a where
clause, preserving their order. Field conditions go through the kind
capability table; relation conditions become sub-queries against the
related entity, scoped by the foreign key equality of each record.

Invariants:
    - AND intersects, OR unions (deduplicated by primary key) and NOT
      excludes, all in scan order; OR: [] matches nothing
    - Filtering is idempotent
    - Unknown keys in a where clause are ignored
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import QueryError
from ..schema.types import RelationDef, RelationKind
from ..store.base import Transaction
from .capabilities import coerce_value, match_field
from .utils import as_list, both

if TYPE_CHECKING:
    from .model import EntityEngine

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

LOGICAL_KEYS = ("AND", "OR", "NOT")
TO_ONE_KEYS = ("is", "isNot")
TO_MANY_KEYS = ("every", "some", "none")


async def apply_where(
    engine: EntityEngine,
    records: List[Record],
    where: Optional[Dict[str, Any]],
    tx: Transaction,
) -> List[Record]:
    """Return the records matching where, in their original order."""
    if not where:
        return list(records)

    entity = engine.entity
    result = list(records)
    for key, condition in where.items():
        if not result:
            break
        if key == "AND":
            for clause in as_list(condition):
                result = await apply_where(engine, result, clause, tx)
        elif key == "OR":
            matched = set()
            for clause in as_list(condition):
                for record in await apply_where(engine, result, clause, tx):
                    matched.add(entity.key_of(record))
            result = [r for r in result if entity.key_of(r) in matched]
        elif key == "NOT":
            excluded = set()
            for clause in as_list(condition):
                for record in await apply_where(engine, result, clause, tx):
                    excluded.add(entity.key_of(record))
            result = [r for r in result if entity.key_of(r) not in excluded]
        elif key == entity.compound_key_name:
            result = _filter_compound(engine, result, condition)
        elif entity.get_field(key) is not None:
            field_def = entity.get_field(key)
            result = [r for r in result if match_field(field_def, r.get(key), condition)]
        elif entity.get_relation(key) is not None:
            rel = entity.get_relation(key)
            checks = await asyncio.gather(
                *(match_relation(engine, rel, r, condition, tx) for r in result)
            )
            result = [r for r, ok in zip(result, checks) if ok]
        else:
            logger.debug(f"Ignoring unknown where key '{key}' on '{entity.name}'")
    return result


def _filter_compound(engine: EntityEngine, records: List[Record], selector: Any) -> List[Record]:
    entity = engine.entity
    if not isinstance(selector, dict):
        raise QueryError(
            f"Compound selector '{entity.compound_key_name}' expects an object", entity.name
        )
    expected = {}
    for name in entity.key_path:
        if name not in selector:
            raise QueryError(
                f"Compound selector '{entity.compound_key_name}' is missing '{name}'", entity.name
            )
        expected[name] = coerce_value(entity.get_field(name), selector[name], entity.name)
    return [r for r in records if all(r.get(n) == v for n, v in expected.items())]


async def _related_exists(engine: EntityEngine, rel: RelationDef, where: Any, tx: Transaction) -> bool:
    target = engine.client.engine(rel.target)
    return await target._exists(where, tx)


async def match_relation(
    engine: EntityEngine,
    rel: RelationDef,
    record: Record,
    condition: Any,
    tx: Transaction,
) -> bool:
    """Evaluate one relation condition for one record."""
    scope = rel.scope(record)

    if rel.kind is RelationKind.TO_MANY:
        if not isinstance(condition, dict):
            raise QueryError(
                f"Relation filter '{rel.name}' expects every/some/none", engine.entity.name
            )
        for op, sub in condition.items():
            if op not in TO_MANY_KEYS:
                raise QueryError(
                    f"Unknown relation filter '{op}' on '{rel.name}'", engine.entity.name
                )
            if scope is None:
                ok = op != "some"
            elif op == "every":
                if sub:
                    ok = not await _related_exists(engine, rel, both({"NOT": sub}, scope), tx)
                else:
                    ok = True
            elif op == "some":
                ok = await _related_exists(engine, rel, both(sub, scope), tx)
            else:
                ok = not await _related_exists(engine, rel, both(sub, scope), tx)
            if not ok:
                return False
        return True

    if condition is None:
        clauses: Dict[str, Any] = {"is": None}
    elif isinstance(condition, dict) and any(k in condition for k in TO_ONE_KEYS):
        unknown = [k for k in condition if k not in TO_ONE_KEYS]
        if unknown:
            raise QueryError(
                f"Unknown relation filter {unknown} on '{rel.name}'", engine.entity.name
            )
        clauses = condition
    elif isinstance(condition, dict):
        clauses = {"is": condition}
    else:
        raise QueryError(f"Relation filter '{rel.name}' expects an object", engine.entity.name)

    for op, sub in clauses.items():
        if rel.kind is RelationKind.TO_ONE_OWNING:
            if scope is None:
                # Absent relation: only "is: None" holds
                ok = op == "is" and sub is None
            elif sub is None:
                ok = op == "isNot"
            else:
                found = await _related_exists(engine, rel, both(sub, scope), tx)
                ok = found if op == "is" else not found
        elif scope is None:
            ok = op == "is" and sub is None
        else:
            # is W / isNot None need a match; is None / isNot W need none
            found = await _related_exists(engine, rel, both(sub, scope), tx)
            ok = found if (op == "is") != (sub is None) else not found
        if not ok:
            return False
    return True
