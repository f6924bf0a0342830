"""Read results and their projection to plain mappings."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..errors import SchemaError
from ..schema.types import EntityDef


class ResultRecord:
    """A stored record plus the relation values attached while reading.

    Relation values are kept apart from the stored fields so they can
    never be written back to the store.
    """

    __slots__ = ("entity", "values", "relations")

    def __init__(self, entity: EntityDef, values: Dict[str, Any]) -> None:
        self.entity = entity
        self.values = values
        self.relations: Dict[str, Any] = {}

    def attach(self, name: str, value: Any) -> None:
        """Attach the resolved value of a declared relation.

        Raises:
            SchemaError: If name is not a relation of the entity
        """
        if self.entity.get_relation(name) is None:
            raise SchemaError(f"'{name}' is not a relation of '{self.entity.name}'")
        self.relations[name] = value

    def __getitem__(self, name: str) -> Any:
        if name in self.relations:
            return self.relations[name]
        return self.values.get(name)

    def to_dict(self, select: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Convert to a plain mapping.

        Null list fields become empty lists. With select, only the truthy
        keys are kept; otherwise every field and attached relation is.
        """
        result: Dict[str, Any] = {}
        for f in self.entity.fields:
            if select is not None and not select.get(f.name):
                continue
            value = self.values.get(f.name)
            if f.is_list and value is None:
                value = []
            result[f.name] = value
        for name, value in self.relations.items():
            if select is not None and not select.get(name):
                continue
            result[name] = value
        return result
