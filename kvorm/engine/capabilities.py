"""
Per-kind capability table.

Every FieldKind maps to a KindCapabilities entry that knows how to coerce
loosely typed input into the canonical representation, which filter
operators the kind supports and which update operations apply to it. List
fields share one set of list operators, parameterized by the element kind.

Invariants:
    - Null semantics follow SQL: a null stored value only matches an
      equality test against None; every other operator rejects it
    - Numeric patch operations leave a null value null
    - Integer division truncates toward zero

How to change safely:
    - A new FieldKind needs an entry in CAPABILITIES
    - Operator names are part of the query payload format
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from ..errors import QueryError, ValidationError
from ..schema.types import FieldDef, FieldKind

Coercer = Callable[[Any], Any]


def _coerce_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    raise ValueError(f"expected a string, got {type(value).__name__}")


def _coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("expected an integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"expected an integer, got {value!r}")


def _coerce_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("expected a number, got bool")
    if isinstance(value, (int, float, Decimal, str)):
        return float(value)
    raise ValueError(f"expected a number, got {value!r}")


def _coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"expected a boolean, got {value!r}")


def _coerce_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise ValueError(f"expected bytes, got {type(value).__name__}")


def _coerce_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        result = datetime.fromisoformat(text)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        raise ValueError(f"expected a datetime, got {value!r}")
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def _coerce_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("expected a decimal, got bool")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)):
        try:
            return Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"invalid decimal {value!r}") from e
    raise ValueError(f"expected a decimal, got {value!r}")


def _coerce_json(value: Any) -> Any:
    return value


EQUALITY_OPS = frozenset({"equals", "not"})
MEMBERSHIP_OPS = frozenset({"in", "notIn"})
RANGE_OPS = frozenset({"lt", "lte", "gt", "gte"})
TEXT_OPS = frozenset({"contains", "startsWith", "endsWith", "mode"})
LIST_OPS = frozenset({"has", "hasEvery", "hasSome", "isEmpty", "equals"})

SET_PATCH = frozenset({"set", "unset"})
NUMERIC_PATCH = frozenset({"increment", "decrement", "multiply", "divide"})
LIST_PATCH = frozenset({"set", "push", "unset"})


@dataclass(frozen=True)
class KindCapabilities:
    """What the engine can do with values of one kind.

    Attributes:
        coerce: Convert input into the canonical representation
        operators: Filter operators accepted in a filter object
        patch: Update operations accepted in an update object
    """

    coerce: Coercer
    operators: FrozenSet[str]
    patch: FrozenSet[str]


_NUMERIC = EQUALITY_OPS | MEMBERSHIP_OPS | RANGE_OPS

CAPABILITIES: Dict[FieldKind, KindCapabilities] = {
    FieldKind.STRING: KindCapabilities(
        _coerce_string, EQUALITY_OPS | MEMBERSHIP_OPS | RANGE_OPS | TEXT_OPS, SET_PATCH
    ),
    FieldKind.INT: KindCapabilities(_coerce_int, _NUMERIC, SET_PATCH | NUMERIC_PATCH),
    FieldKind.FLOAT: KindCapabilities(_coerce_float, _NUMERIC, SET_PATCH | NUMERIC_PATCH),
    FieldKind.BIGINT: KindCapabilities(_coerce_int, _NUMERIC, SET_PATCH | NUMERIC_PATCH),
    FieldKind.DECIMAL: KindCapabilities(_coerce_decimal, _NUMERIC, SET_PATCH | NUMERIC_PATCH),
    FieldKind.DATETIME: KindCapabilities(_coerce_datetime, _NUMERIC, SET_PATCH),
    FieldKind.BOOLEAN: KindCapabilities(_coerce_boolean, EQUALITY_OPS, SET_PATCH),
    FieldKind.BYTES: KindCapabilities(_coerce_bytes, EQUALITY_OPS | MEMBERSHIP_OPS, SET_PATCH),
    FieldKind.JSON: KindCapabilities(_coerce_json, EQUALITY_OPS, SET_PATCH),
}


# Coercion


def coerce_value(field_def: FieldDef, value: Any, entity: Optional[str] = None) -> Any:
    """Coerce a stored value for a field (lists element-wise).

    Raises:
        ValidationError: If the value cannot represent the field's kind
    """
    if value is None:
        return None
    coerce = CAPABILITIES[field_def.kind].coerce
    try:
        if field_def.is_list:
            if not isinstance(value, (list, tuple)):
                raise ValueError(f"expected a list, got {type(value).__name__}")
            return [coerce(item) if item is not None else None for item in value]
        return coerce(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid value for '{field_def.name}': {e}", entity=entity, field_name=field_def.name
        ) from e


def _operand(field_def: FieldDef, value: Any) -> Any:
    if value is None:
        return None
    try:
        return CAPABILITIES[field_def.kind].coerce(value)
    except ValueError as e:
        raise QueryError(f"Invalid operand for '{field_def.name}': {e}") from e


# Scalar filters


def _fold(value: Any, insensitive: bool) -> Any:
    if insensitive and isinstance(value, str):
        return value.casefold()
    return value


def _match_operator(field_def: FieldDef, value: Any, op: str, operand: Any, insensitive: bool) -> bool:
    if op == "equals":
        if operand is None:
            return value is None
        return value is not None and _fold(value, insensitive) == _fold(
            _operand(field_def, operand), insensitive
        )
    if op == "not":
        if operand is None:
            return value is not None
        if isinstance(operand, dict) and field_def.kind is not FieldKind.JSON:
            nested = {"mode": "insensitive", **operand} if insensitive else operand
            return value is not None and not _match_filter(field_def, value, nested)
        return value is not None and _fold(value, insensitive) != _fold(
            _operand(field_def, operand), insensitive
        )

    # Every remaining operator rejects null on either side
    if value is None or operand is None:
        return False
    if op in ("in", "notIn"):
        if not isinstance(operand, (list, tuple)):
            raise QueryError(f"'{op}' on '{field_def.name}' expects a list")
        members = [_fold(_operand(field_def, item), insensitive) for item in operand]
        found = _fold(value, insensitive) in members
        return found if op == "in" else not found
    if op in RANGE_OPS:
        left = _fold(value, insensitive)
        right = _fold(_operand(field_def, operand), insensitive)
        if op == "lt":
            return left < right
        if op == "lte":
            return left <= right
        if op == "gt":
            return left > right
        return left >= right
    left = _fold(value, insensitive)
    right = _fold(_operand(field_def, operand), insensitive)
    if op == "contains":
        return right in left
    if op == "startsWith":
        return left.startswith(right)
    if op == "endsWith":
        return left.endswith(right)
    raise QueryError(f"Unknown filter operator '{op}' on '{field_def.name}'")


def _match_filter(field_def: FieldDef, value: Any, condition: Dict[str, Any]) -> bool:
    operators = CAPABILITIES[field_def.kind].operators
    insensitive = condition.get("mode") == "insensitive"
    for op, operand in condition.items():
        if op not in operators:
            raise QueryError(f"Unknown filter operator '{op}' on '{field_def.name}'")
        if op == "mode":
            continue
        if not _match_operator(field_def, value, op, operand, insensitive):
            return False
    return True


# List filters


def _same_members(left: List[Any], right: List[Any]) -> bool:
    return len(left) == len(right) and all(x in right for x in left) and all(
        y in left for y in right
    )


def _match_list(field_def: FieldDef, value: Optional[List[Any]], condition: Any) -> bool:
    values = value or []
    if condition is None:
        return not values
    if isinstance(condition, (list, tuple)):
        return _same_members(values, [_operand(field_def, c) for c in condition])
    if not isinstance(condition, dict):
        raise QueryError(f"List filter on '{field_def.name}' expects a list or filter object")
    for op, operand in condition.items():
        if op not in LIST_OPS:
            raise QueryError(f"Unknown list operator '{op}' on '{field_def.name}'")
        if op == "has":
            ok = operand is not None and _operand(field_def, operand) in values
        elif op == "hasEvery":
            ok = all(_operand(field_def, item) in values for item in operand or [])
        elif op == "hasSome":
            ok = any(_operand(field_def, item) in values for item in operand or [])
        elif op == "isEmpty":
            ok = (len(values) == 0) == bool(operand)
        else:
            ok = not values if operand is None else _same_members(
                values, [_operand(field_def, c) for c in operand]
            )
        if not ok:
            return False
    return True


def match_field(field_def: FieldDef, value: Any, condition: Any) -> bool:
    """Evaluate one field condition from a where clause against a value.

    Raises:
        QueryError: On unknown operators or operands of the wrong kind
    """
    if field_def.is_list:
        return _match_list(field_def, value, condition)
    if condition is None:
        return value is None
    if isinstance(condition, dict):
        return _match_filter(field_def, value, condition)
    return _match_operator(field_def, value, "equals", condition, False)


# Update patches


def _divide(kind: FieldKind, current: Any, operand: Any) -> Any:
    if operand == 0:
        raise ValidationError("Division by zero in update")
    if kind in (FieldKind.INT, FieldKind.BIGINT):
        quotient = abs(current) // abs(operand)
        return quotient if (current >= 0) == (operand >= 0) else -quotient
    return current / operand


def _is_patch_object(field_def: FieldDef, update: Any, ops: FrozenSet[str]) -> bool:
    if not isinstance(update, dict) or len(update) != 1:
        return False
    op = next(iter(update))
    if field_def.kind is FieldKind.JSON:
        return op in ops
    return True


def apply_patch(field_def: FieldDef, current: Any, update: Any, entity: Optional[str] = None) -> Any:
    """Compute the new value of a field from an update entry.

    A bare value (or a bare list for list fields) replaces the current one.

    Raises:
        ValidationError: On unsupported operations or invalid values
    """
    if field_def.is_list:
        if not _is_patch_object(field_def, update, LIST_PATCH):
            return coerce_value(field_def, update, entity)
        op, operand = next(iter(update.items()))
        if op == "set":
            return coerce_value(field_def, operand, entity)
        if op == "unset":
            return None if operand else current
        if op == "push":
            items = operand if isinstance(operand, (list, tuple)) else [operand]
            return list(current or []) + coerce_value(field_def, list(items), entity)
        raise ValidationError(
            f"Unsupported list update '{op}' on '{field_def.name}'",
            entity=entity,
            field_name=field_def.name,
        )

    caps = CAPABILITIES[field_def.kind]
    if not _is_patch_object(field_def, update, caps.patch):
        return coerce_value(field_def, update, entity)
    op, operand = next(iter(update.items()))
    if op not in caps.patch:
        raise ValidationError(
            f"Unsupported update '{op}' on '{field_def.name}'",
            entity=entity,
            field_name=field_def.name,
        )
    if op == "set":
        return coerce_value(field_def, operand, entity)
    if op == "unset":
        return None if operand else current
    if current is None:
        return None
    operand = coerce_value(field_def, operand, entity)
    if op == "increment":
        return current + operand
    if op == "decrement":
        return current - operand
    if op == "multiply":
        return current * operand
    return _divide(field_def.kind, current, operand)
