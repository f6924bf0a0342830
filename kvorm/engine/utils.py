"""Small helpers shared by the engine modules."""

from __future__ import annotations

from typing import Any, List


def as_list(value: Any) -> List[Any]:
    """Wrap a single clause or item in a list; None becomes empty."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def both(left: Any, right: Any) -> Any:
    """AND two where clauses, skipping an empty one."""
    if not left:
        return right
    if not right:
        return left
    return {"AND": [left, right]}
