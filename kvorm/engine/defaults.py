"""
Default filling for create payloads.

fill_defaults() turns the scalar part of a create payload into a complete
stored record: keys generated, defaults applied, lists unwrapped and every
value coerced into its kind's canonical representation.
"""

from __future__ import annotations

import copy
import difflib
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict

from ..errors import UnknownFieldError, ValidationError
from ..schema.types import FieldDef, FieldKind, Generated
from ..store.base import Transaction
from .capabilities import coerce_value

if TYPE_CHECKING:
    from .model import EntityEngine

NUMERIC_KEY_KINDS = (FieldKind.INT, FieldKind.BIGINT, FieldKind.FLOAT, FieldKind.DECIMAL)


def random_id() -> str:
    """32 lowercase hex characters from a random UUID.

    Backs cuid() and keyless string ids. It is not a collision-resistant
    cuid; the values carry no timestamp and do not sort by creation.
    """
    return uuid.uuid4().hex


async def _next_value(engine: EntityEngine, field_def: FieldDef, tx: Transaction) -> Any:
    """Largest stored value of a numeric field plus one (1 when empty)."""
    table = tx.table(engine.name)
    if engine.entity.key_path == (field_def.name,):
        last = await table.last_key()
        return last[0] + 1 if last is not None else 1
    values = [r.get(field_def.name) for r in await table.get_all()]
    values = [v for v in values if v is not None]
    return max(values) + 1 if values else 1


async def generate_default(engine: EntityEngine, field_def: FieldDef, tx: Transaction) -> Any:
    default = field_def.default
    if default is Generated.AUTOINCREMENT:
        return await _next_value(engine, field_def, tx)
    if default is Generated.UUID:
        return str(uuid.uuid4())
    if default is Generated.CUID:
        return random_id()
    if default is Generated.NOW:
        return datetime.now(timezone.utc)
    return coerce_value(field_def, copy.deepcopy(default), engine.name)


async def _generate_key(engine: EntityEngine, field_def: FieldDef, tx: Transaction) -> Any:
    if field_def.has_default:
        return await generate_default(engine, field_def, tx)
    if field_def.kind in NUMERIC_KEY_KINDS:
        return await _next_value(engine, field_def, tx)
    if field_def.kind is FieldKind.STRING:
        return random_id()
    raise ValidationError(
        f"Key field '{field_def.name}' of '{engine.name}' needs a value",
        entity=engine.name,
        field_name=field_def.name,
    )


async def fill_defaults(engine: EntityEngine, data: Dict[str, Any], tx: Transaction) -> Dict[str, Any]:
    """Build the stored record for create data (relation keys excluded).

    Raises:
        UnknownFieldError: If data names a field the entity does not have
        ValidationError: On a missing composite key, a missing required
            value or a value of the wrong kind
    """
    entity = engine.entity
    record: Dict[str, Any] = {}
    for key, value in data.items():
        if entity.get_relation(key) is not None:
            continue
        field_def = entity.get_field(key)
        if field_def is None:
            suggestions = difflib.get_close_matches(key, entity.get_field_names(), n=3)
            raise UnknownFieldError(key, entity.name, suggestions)
        if field_def.is_list and isinstance(value, dict) and "set" in value:
            value = value["set"]
        record[key] = coerce_value(field_def, value, entity.name)

    key_path = entity.key_path
    missing = [name for name in key_path if record.get(name) is None]
    if missing and len(key_path) > 1:
        for name in missing:
            field_def = entity.get_field(name)
            if not field_def.has_default:
                raise ValidationError(
                    f"Composite key field '{name}' of '{entity.name}' is missing",
                    entity=entity.name,
                    field_name=name,
                )
            record[name] = await generate_default(engine, field_def, tx)
    elif missing:
        record[key_path[0]] = await _generate_key(engine, entity.get_field(key_path[0]), tx)

    for field_def in entity.fields:
        if field_def.name not in record:
            if field_def.has_default:
                record[field_def.name] = await generate_default(engine, field_def, tx)
            elif field_def.is_list:
                record[field_def.name] = []
            else:
                record[field_def.name] = None
        if field_def.is_required and record[field_def.name] is None:
            raise ValidationError(
                f"Required field '{field_def.name}' of '{entity.name}' has no value",
                entity=entity.name,
                field_name=field_def.name,
            )
    return record
