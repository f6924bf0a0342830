"""
Schema module for kvorm.

This module provides the static metadata the engines are parameterized by:
- Type definitions (EntityDef, FieldDef, RelationDef)
- Schema registry with cross-entity validation
- YAML/JSON schema file loading

Invariants:
    - All entities must be registered before the registry is frozen
    - A client freezes the registry it is given
"""

from .loader import load_schema, parse_json, parse_schema, parse_yaml
from .registry import DuplicateRegistrationError, RegistryFrozenError, SchemaRegistry
from .types import (
    EntityDef,
    FieldDef,
    FieldKind,
    Generated,
    RelationDef,
    RelationKind,
    field,
    relation,
)

__all__ = [
    # Types
    "EntityDef",
    "FieldDef",
    "FieldKind",
    "Generated",
    "RelationDef",
    "RelationKind",
    "field",
    "relation",
    # Registry
    "SchemaRegistry",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    # Loader
    "load_schema",
    "parse_schema",
    "parse_yaml",
    "parse_json",
]
