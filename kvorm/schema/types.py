"""
Core type definitions for kvorm schema metadata.

This module defines the static description of the modeled data:
- FieldDef: A scalar (or list-of-scalar) field of an entity
- RelationDef: A named relation from one entity to another
- EntityDef: An entity, mapped to exactly one store table

Invariants:
    - Every entity has exactly one primary key (possibly composite)
    - Exactly one side of a relation owns the foreign key; the other side
      holds no column and is resolved by reverse lookup
    - For every relation, the scoped sub-query of a record is
      {references[i]: record[fields[i]]}
    - Names are unique within an entity across fields and relations

How to change safely:
    - Add new field kinds together with a capability entry in
      kvorm.engine.capabilities
    - Never change the meaning of fields/references for an existing
      RelationKind

Example:
    >>> from kvorm.schema.types import EntityDef, field, relation
    >>> User = EntityDef(
    ...     name="User",
    ...     fields=(
    ...         field("id", "int", is_id=True, default="autoincrement()"),
    ...         field("name", "string", is_required=True),
    ...     ),
    ...     relations=(
    ...         relation("posts", "Post", "to_many", ("id",), ("authorId",)),
    ...     ),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any


class FieldKind(Enum):
    """Supported scalar kinds.

    These map to canonical in-memory representations and select the
    filter and patch behavior of a field.
    """

    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOLEAN = "boolean"
    BYTES = "bytes"
    DATETIME = "datetime"  # timezone-aware datetime.datetime
    BIGINT = "bigint"  # Python int
    DECIMAL = "decimal"  # decimal.Decimal
    JSON = "json"  # Arbitrary JSON value

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Args:
            value: String name of the field kind

        Returns:
            Corresponding FieldKind enum value

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")

    @property
    def is_numeric(self) -> bool:
        return self in (FieldKind.INT, FieldKind.FLOAT, FieldKind.BIGINT, FieldKind.DECIMAL)


class Generated(Enum):
    """Generated default values, written as function calls in schema files.

    uuid() yields a dashed UUID4 string. cuid() yields 32 lowercase hex
    characters of a random UUID4, not an actual cuid.
    """

    AUTOINCREMENT = "autoincrement()"
    UUID = "uuid()"
    CUID = "cuid()"
    NOW = "now()"

    @classmethod
    def parse(cls, value: Any) -> Any:
        """Return the Generated member for a call string, or the value unchanged."""
        if isinstance(value, str):
            for member in cls:
                if member.value == value:
                    return member
        return value


class RelationKind(Enum):
    """Cardinality and ownership of a relation, seen from the declaring entity."""

    TO_ONE_OWNING = "to_one_owning"  # this entity stores the foreign key
    TO_ONE_REFERENCED = "to_one_referenced"  # target stores the FK (1:1)
    TO_MANY = "to_many"  # target stores the FK (1:n)

    @classmethod
    def from_str(cls, value: str) -> RelationKind:
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid relation kind '{value}'. Valid kinds: {valid}")


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single field of an entity.

    Attributes:
        name: Field name (also the record key)
        kind: Scalar kind of the field (or of its elements for lists)
        is_list: Whether the field holds a list of scalars
        is_id: Whether the field is the (single-field) primary key
        is_unique: Whether the field carries a unique secondary index
        is_required: Whether a value must be present after defaults
        default: Literal default value or a Generated member
        description: Human-readable description

    Example:
        >>> title = FieldDef(name="title", kind=FieldKind.STRING, is_required=True)
    """

    name: str
    kind: FieldKind
    is_list: bool = False
    is_id: bool = False
    is_unique: bool = False
    is_required: bool = False
    default: Any = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if self.is_id and self.is_list:
            raise ValueError(f"Key field '{self.name}' cannot be a list")
        if self.default is Generated.AUTOINCREMENT and self.kind not in (
            FieldKind.INT,
            FieldKind.BIGINT,
        ):
            raise ValueError(f"autoincrement() requires an integer field, got '{self.name}'")

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"name": self.name, "kind": self.kind.value}
        if self.is_list:
            result["is_list"] = True
        if self.is_id:
            result["is_id"] = True
        if self.is_unique:
            result["is_unique"] = True
        if self.is_required:
            result["is_required"] = True
        if self.default is not None:
            result["default"] = (
                self.default.value if isinstance(self.default, Generated) else self.default
            )
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            kind=FieldKind.from_str(data["kind"]),
            is_list=data.get("is_list", False),
            is_id=data.get("is_id", False),
            is_unique=data.get("is_unique", False),
            is_required=data.get("is_required", False),
            default=Generated.parse(data.get("default")),
            description=data.get("description", ""),
        )


def field(
    name: str,
    kind: str | FieldKind,
    *,
    is_list: bool = False,
    is_id: bool = False,
    is_unique: bool = False,
    is_required: bool = False,
    default: Any = None,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    Generated defaults may be given as call strings ("autoincrement()",
    "uuid()", "cuid()", "now()").

    Example:
        >>> field("id", "int", is_id=True, default="autoincrement()")
    """
    if isinstance(kind, str):
        kind = FieldKind.from_str(kind)
    return FieldDef(
        name=name,
        kind=kind,
        is_list=is_list,
        is_id=is_id,
        is_unique=is_unique,
        is_required=is_required,
        default=Generated.parse(default),
        description=description,
    )


@dataclass(frozen=True)
class RelationDef:
    """Definition of a relation from the declaring entity to a target.

    Attributes:
        name: Relation name (used in where/include/select/orderBy/data)
        target: Name of the related entity
        kind: Ownership and cardinality
        fields: Field names on the declaring entity
        references: Field names on the target, aligned with fields
        cascade_delete: Delete children through this relation first when
            the declaring record is deleted (not allowed on owning side)

    Invariants:
        - fields and references have the same, non-zero length
        - TO_ONE_OWNING: fields are FK columns, references the target key
        - TO_ONE_REFERENCED / TO_MANY: fields are this entity's key,
          references the target's FK columns
    """

    name: str
    target: str
    kind: RelationKind
    fields: tuple[str, ...]
    references: tuple[str, ...]
    cascade_delete: bool = False

    def __post_init__(self) -> None:
        """Validate relation definition."""
        if not self.name:
            raise ValueError("Relation name cannot be empty")
        if not self.fields or len(self.fields) != len(self.references):
            raise ValueError(
                f"Relation '{self.name}': fields and references must be non-empty and aligned"
            )
        if self.cascade_delete and self.kind is RelationKind.TO_ONE_OWNING:
            raise ValueError(
                f"Relation '{self.name}': cascade_delete belongs on the referenced side"
            )

    @property
    def is_owning(self) -> bool:
        return self.kind is RelationKind.TO_ONE_OWNING

    @property
    def is_list(self) -> bool:
        return self.kind is RelationKind.TO_MANY

    def scope(self, record: dict[str, Any]) -> dict[str, Any] | None:
        """Build the FK-equality where clause for a record.

        Returns None when any local value is null (relation absent).
        """
        values = [record.get(name) for name in self.fields]
        if any(value is None for value in values):
            return None
        return dict(zip(self.references, values))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "target": self.target,
            "kind": self.kind.value,
            "fields": list(self.fields),
            "references": list(self.references),
        }
        if self.cascade_delete:
            result["cascade_delete"] = True
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelationDef:
        return cls(
            name=data["name"],
            target=data["target"],
            kind=RelationKind.from_str(data["kind"]),
            fields=tuple(data["fields"]),
            references=tuple(data["references"]),
            cascade_delete=data.get("cascade_delete", False),
        )


def relation(
    name: str,
    target: str,
    kind: str | RelationKind,
    fields: tuple[str, ...] | list[str],
    references: tuple[str, ...] | list[str],
    *,
    cascade_delete: bool = False,
) -> RelationDef:
    """Convenience function to create a RelationDef."""
    if isinstance(kind, str):
        kind = RelationKind.from_str(kind)
    return RelationDef(
        name=name,
        target=target,
        kind=kind,
        fields=tuple(fields),
        references=tuple(references),
        cascade_delete=cascade_delete,
    )


@dataclass(frozen=True)
class EntityDef:
    """Definition of a modeled entity, stored in one table.

    Attributes:
        name: Entity name, also the table name
        fields: Tuple of field definitions
        relations: Tuple of relation definitions
        primary_key: Explicit composite key (field names), optional
        description: Human-readable description

    Key resolution follows the declared composite key, else the field
    flagged is_id, else the first unique field.
    """

    name: str
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    relations: tuple[RelationDef, ...] = dataclass_field(default_factory=tuple)
    primary_key: tuple[str, ...] | None = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity definition."""
        if not self.name:
            raise ValueError("Entity name cannot be empty")

        names = [f.name for f in self.fields] + [r.name for r in self.relations]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate field or relation name in entity '{self.name}'")

        field_names = {f.name for f in self.fields}
        if self.primary_key is not None:
            missing = [n for n in self.primary_key if n not in field_names]
            if missing:
                raise ValueError(f"Entity '{self.name}': unknown key fields {missing}")
        elif not any(f.is_id or f.is_unique for f in self.fields):
            raise ValueError(f"Entity '{self.name}' has no primary key")

        for rel in self.relations:
            missing = [n for n in rel.fields if n not in field_names]
            if missing:
                raise ValueError(
                    f"Entity '{self.name}', relation '{rel.name}': unknown fields {missing}"
                )

    @property
    def key_path(self) -> tuple[str, ...]:
        if self.primary_key is not None:
            return self.primary_key
        for f in self.fields:
            if f.is_id:
                return (f.name,)
        return next((f.name,) for f in self.fields if f.is_unique)

    @property
    def compound_key_name(self) -> str | None:
        """Name of the compound unique selector, for composite keys only."""
        if len(self.key_path) < 2:
            return None
        return "_".join(self.key_path)

    @property
    def unique_fields(self) -> list[FieldDef]:
        """Unique fields that are not part of the key (each gets an index)."""
        return [f for f in self.fields if f.is_unique and f.name not in self.key_path]

    @property
    def list_fields(self) -> list[FieldDef]:
        return [f for f in self.fields if f.is_list]

    @property
    def owning_relations(self) -> list[RelationDef]:
        return [r for r in self.relations if r.is_owning]

    @property
    def referenced_relations(self) -> list[RelationDef]:
        return [r for r in self.relations if not r.is_owning]

    @property
    def cascade_relations(self) -> list[RelationDef]:
        return [r for r in self.relations if r.cascade_delete]

    def get_field(self, name: str) -> FieldDef | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_relation(self, name: str) -> RelationDef | None:
        for r in self.relations:
            if r.name == name:
                return r
        return None

    def get_field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @staticmethod
    def index_name(field_name: str) -> str:
        return f"{field_name}Index"

    def key_of(self, record: dict[str, Any]) -> tuple[Any, ...]:
        """Extract the store key of a record."""
        return tuple(record[name] for name in self.key_path)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.relations:
            result["relations"] = [r.to_dict() for r in self.relations]
        if self.primary_key is not None:
            result["primary_key"] = list(self.primary_key)
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityDef:
        """Create from dictionary representation."""
        primary_key = data.get("primary_key")
        return cls(
            name=data["name"],
            fields=tuple(FieldDef.from_dict(f) for f in data.get("fields", [])),
            relations=tuple(RelationDef.from_dict(r) for r in data.get("relations", [])),
            primary_key=tuple(primary_key) if primary_key else None,
            description=data.get("description", ""),
        )
