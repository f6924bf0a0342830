"""
Write orchestration: nested creates, updates and cascading deletes.

All functions run inside a transaction supplied by the calling engine
operation; any error they raise aborts it, undoing every write made so
far in the same call.

Create order:
    1. Owning relations: nested create first, connect by unique selector,
       or validation of raw foreign key values
    2. The record itself, after default filling
    3. Referenced relations: nested create / connect / createMany with the
       new record's key as the child's foreign key
"""

from __future__ import annotations

import difflib
import logging
from typing import TYPE_CHECKING, Any, Dict, List

from ..errors import (
    RecordNotFoundError,
    UnknownFieldError,
    UnsupportedOperationError,
    ValidationError,
)
from ..store.base import Key, StoreTable, Transaction
from .capabilities import apply_patch
from .defaults import fill_defaults
from .utils import as_list

if TYPE_CHECKING:
    from .model import EntityEngine

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def reject_connect_or_create(engine: EntityEngine, data: Any) -> None:
    """Raise UnsupportedOperationError if connectOrCreate appears anywhere in data."""
    if not isinstance(data, dict):
        return
    entity = engine.entity
    for rel in entity.relations:
        nested = data.get(rel.name)
        if not isinstance(nested, dict):
            continue
        if "connectOrCreate" in nested:
            raise UnsupportedOperationError("connectOrCreate", entity.name, rel.name)
        target = engine.client.engine(rel.target)
        for item in as_list(nested.get("create")):
            reject_connect_or_create(target, item)
        create_many = nested.get("createMany")
        if isinstance(create_many, dict):
            for item in as_list(create_many.get("data")):
                reject_connect_or_create(target, item)


def reject_nested_writes(engine: EntityEngine, data: Dict[str, Any], operation: str) -> None:
    for key in data:
        if engine.entity.get_relation(key) is not None:
            raise UnsupportedOperationError(
                f"Nested relation write in {operation}", engine.name, key
            )


async def validate_foreign_keys(engine: EntityEngine, data: Record, tx: Transaction) -> None:
    """Check that every fully supplied raw foreign key points at a record.

    Raises:
        ValidationError: If a referenced record does not exist
    """
    for rel in engine.entity.owning_relations:
        values = [data.get(f) for f in rel.fields]
        if any(v is None for v in values):
            continue
        target = engine.client.engine(rel.target)
        if await target._find_unique_raw(dict(zip(rel.references, values)), tx) is None:
            raise ValidationError(
                f"Foreign key {list(rel.fields)} of '{engine.name}' references a missing "
                f"'{rel.target}' record",
                entity=engine.name,
                field_name=rel.fields[0],
            )


async def create_record(engine: EntityEngine, data: Record, tx: Transaction) -> Key:
    """Create one record with its nested relation writes; returns its key."""
    entity = engine.entity
    scalars = {k: v for k, v in data.items() if entity.get_relation(k) is None}

    for rel in entity.owning_relations:
        nested = data.get(rel.name)
        if nested is None:
            continue
        target = engine.client.engine(rel.target)
        if "create" in nested:
            linked = await target.create({"data": nested["create"]}, tx=tx)
        elif "connect" in nested:
            linked = await target._find_unique_raw(nested["connect"], tx)
            if linked is None:
                raise RecordNotFoundError(target.name, nested["connect"])
        else:
            continue
        for local, remote in zip(rel.fields, rel.references):
            scalars[local] = linked[remote]

    await validate_foreign_keys(engine, scalars, tx)
    record = await fill_defaults(engine, scalars, tx)
    key = await tx.table(entity.name).add(record)
    logger.debug(f"Created {entity.name} {key}")

    for rel in entity.referenced_relations:
        nested = data.get(rel.name)
        if not isinstance(nested, dict):
            continue
        target = engine.client.engine(rel.target)
        scope = rel.scope(record)
        for item in as_list(nested.get("create")):
            await target.create({"data": {**item, **scope}}, tx=tx)
        for selector in as_list(nested.get("connect")):
            await target.update({"where": selector, "data": dict(scope)}, tx=tx)
        create_many = nested.get("createMany")
        if isinstance(create_many, dict):
            await target.create_many(
                {
                    "data": [{**item, **scope} for item in as_list(create_many.get("data"))],
                    "skipDuplicates": create_many.get("skipDuplicates", False),
                },
                tx=tx,
            )
    return key


async def _is_duplicate(engine: EntityEngine, table: StoreTable, record: Record, key: Key) -> bool:
    """True when the key or any non-null unique value is already stored."""
    if await table.get(key) is not None:
        return True
    for f in engine.entity.unique_fields:
        value = record.get(f.name)
        if value is None:
            continue
        if await table.index(engine.entity.index_name(f.name)).get((value,)) is not None:
            return True
    return False


async def create_rows(
    engine: EntityEngine,
    rows: List[Record],
    skip_duplicates: bool,
    tx: Transaction,
) -> List[Key]:
    """Insert scalar rows; returns the keys actually inserted.

    With skip_duplicates, a row whose key or unique field value is already
    taken (by a stored row or an earlier row of the batch) is left out.
    """
    table = tx.table(engine.name)
    keys = []
    for data in rows:
        await validate_foreign_keys(engine, data, tx)
        record = await fill_defaults(engine, data, tx)
        key = engine.entity.key_of(record)
        if skip_duplicates and await _is_duplicate(engine, table, record, key):
            continue
        keys.append(await table.add(record))
    return keys


def apply_update(engine: EntityEngine, current: Record, data: Dict[str, Any]) -> Record:
    """Compute the updated record.

    Raises:
        UnknownFieldError: If data names an unknown field
        ValidationError: If a key field changes or a required field is unset
    """
    entity = engine.entity
    updated = dict(current)
    for name, update in data.items():
        field_def = entity.get_field(name)
        if field_def is None:
            suggestions = difflib.get_close_matches(name, entity.get_field_names(), n=3)
            raise UnknownFieldError(name, entity.name, suggestions)
        value = apply_patch(field_def, current.get(name), update, entity.name)
        if name in entity.key_path and value != current.get(name):
            raise ValidationError(
                f"Key field '{name}' of '{entity.name}' cannot be changed",
                entity=entity.name,
                field_name=name,
            )
        if field_def.is_required and value is None:
            raise ValidationError(
                f"Required field '{name}' of '{entity.name}' cannot be unset",
                entity=entity.name,
                field_name=name,
            )
        updated[name] = value
    return updated


async def delete_record(engine: EntityEngine, record: Record, tx: Transaction) -> None:
    """Delete cascade children through their own delete_many, then the record."""
    entity = engine.entity
    for rel in entity.cascade_relations:
        scope = rel.scope(record)
        if scope is None:
            continue
        await engine.client.engine(rel.target).delete_many({"where": scope}, tx=tx)
    key = entity.key_of(record)
    await tx.table(entity.name).delete(key)
    logger.debug(f"Deleted {entity.name} {key}")
