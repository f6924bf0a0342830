"""
Transaction scope analysis.

Pure functions over the registry that compute the set of tables an
operation may touch, so the operation can open one transaction over
exactly those tables. Stores refuse access to anything outside it.

Invariants:
    - The entity's own table is always included
    - Every relation named in where, orderBy, select, include or a
      nested write adds its target, recursively
    - Every raw foreign key supplied on create adds its target
    - Delete adds every cascade path, cycle-safe
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Set

from ..schema.registry import SchemaRegistry
from ..schema.types import RelationKind
from .filters import LOGICAL_KEYS, TO_MANY_KEYS, TO_ONE_KEYS
from .utils import as_list

NESTED_WRITE_KEYS = ("create", "connect", "connectOrCreate", "createMany")


def tables_for_where(
    registry: SchemaRegistry,
    name: str,
    where: Optional[Dict[str, Any]],
    acc: Optional[Set[str]] = None,
) -> Set[str]:
    acc = set() if acc is None else acc
    acc.add(name)
    if not where:
        return acc
    entity = registry.get(name)
    for key, condition in where.items():
        if key in LOGICAL_KEYS:
            for clause in as_list(condition):
                if isinstance(clause, dict):
                    tables_for_where(registry, name, clause, acc)
            continue
        rel = entity.get_relation(key)
        if rel is None:
            continue
        acc.add(rel.target)
        if not isinstance(condition, dict):
            continue
        wrapper_keys = TO_MANY_KEYS if rel.kind is RelationKind.TO_MANY else TO_ONE_KEYS
        if any(k in condition for k in wrapper_keys):
            for k in wrapper_keys:
                if isinstance(condition.get(k), dict):
                    tables_for_where(registry, rel.target, condition[k], acc)
        else:
            tables_for_where(registry, rel.target, condition, acc)
    return acc


def tables_for_order_by(
    registry: SchemaRegistry,
    name: str,
    order_by: Any,
    acc: Optional[Set[str]] = None,
) -> Set[str]:
    acc = set() if acc is None else acc
    acc.add(name)
    entity = registry.get(name)
    for clause in as_list(order_by):
        if not isinstance(clause, dict):
            continue
        for key, spec in clause.items():
            rel = entity.get_relation(key)
            if rel is None:
                continue
            acc.add(rel.target)
            if rel.kind is not RelationKind.TO_MANY and isinstance(spec, dict):
                tables_for_order_by(registry, rel.target, spec, acc)
    return acc


def tables_for_projection(
    registry: SchemaRegistry,
    name: str,
    query: Optional[Dict[str, Any]],
    acc: Optional[Set[str]] = None,
) -> Set[str]:
    """Tables needed by the relations requested through select/include."""
    acc = set() if acc is None else acc
    acc.add(name)
    if not query:
        return acc
    entity = registry.get(name)
    for clause_key in ("select", "include"):
        clause = query.get(clause_key)
        if not isinstance(clause, dict):
            continue
        for key, spec in clause.items():
            rel = entity.get_relation(key)
            if rel is None or not spec:
                continue
            acc.add(rel.target)
            if isinstance(spec, dict):
                tables_for_find(registry, rel.target, spec, acc)
    return acc


def tables_for_find(
    registry: SchemaRegistry,
    name: str,
    query: Optional[Dict[str, Any]],
    acc: Optional[Set[str]] = None,
) -> Set[str]:
    acc = set() if acc is None else acc
    acc.add(name)
    if not query:
        return acc
    tables_for_where(registry, name, query.get("where"), acc)
    tables_for_order_by(registry, name, query.get("orderBy"), acc)
    tables_for_projection(registry, name, query, acc)
    return acc


def tables_for_create(
    registry: SchemaRegistry,
    name: str,
    data: Optional[Dict[str, Any]],
    acc: Optional[Set[str]] = None,
) -> Set[str]:
    """Tables touched by creating one record from data, nested writes included."""
    acc = set() if acc is None else acc
    acc.add(name)
    if not data:
        return acc
    entity = registry.get(name)

    for rel in entity.owning_relations:
        if all(data.get(f) is not None for f in rel.fields):
            acc.add(rel.target)

    for key, nested in data.items():
        rel = entity.get_relation(key)
        if rel is None:
            continue
        acc.add(rel.target)
        if not isinstance(nested, dict):
            continue
        for item in as_list(nested.get("create")):
            tables_for_create(registry, rel.target, item, acc)
        for selector in as_list(nested.get("connect")):
            tables_for_where(registry, rel.target, selector, acc)
        for entry in as_list(nested.get("connectOrCreate")):
            if isinstance(entry, dict):
                tables_for_where(registry, rel.target, entry.get("where"), acc)
                tables_for_create(registry, rel.target, entry.get("create"), acc)
        create_many = nested.get("createMany")
        if isinstance(create_many, dict):
            for item in as_list(create_many.get("data")):
                tables_for_create(registry, rel.target, item, acc)
    return acc


def tables_for_create_query(registry: SchemaRegistry, name: str, query: Dict[str, Any]) -> Set[str]:
    """create / createMany: every row plus the returned projection."""
    acc: Set[str] = {name}
    for item in as_list(query.get("data")):
        tables_for_create(registry, name, item, acc)
    tables_for_projection(registry, name, query, acc)
    return acc


def tables_for_update(
    registry: SchemaRegistry,
    name: str,
    query: Optional[Dict[str, Any]],
) -> Set[str]:
    return tables_for_find(registry, name, query)


def tables_for_delete(
    registry: SchemaRegistry,
    name: str,
    query: Optional[Dict[str, Any]],
    acc: Optional[Set[str]] = None,
    visited: Optional[Set[str]] = None,
) -> Set[str]:
    acc = set() if acc is None else acc
    visited = set() if visited is None else visited
    tables_for_find(registry, name, query, acc)
    if name in visited:
        return acc
    visited.add(name)
    for rel in registry.get(name).cascade_relations:
        acc.add(rel.target)
        tables_for_delete(registry, rel.target, None, acc, visited)
    return acc
