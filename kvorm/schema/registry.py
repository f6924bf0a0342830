"""
Schema registry for kvorm.

The SchemaRegistry holds every EntityDef of a data model and is the
single source of truth the engines resolve names against. It provides:
- Registration of entities
- Lookup by name (with suggestions for typos)
- Cross-entity validation of relations
- Schema fingerprinting and the store table layout

Invariants:
    - Registry is mutable while the model is assembled, frozen before use
    - Entity names are unique
    - Every relation target is a registered entity (checked on freeze)
    - Fingerprint changes whenever the model changes

How to change safely:
    - Register all entities before calling freeze()
    - Bump the schema version in Settings when table_specs() changes

Example:
    >>> registry = SchemaRegistry()
    >>> registry.register(User)
    >>> registry.register(Post)
    >>> registry.freeze()
    'sha256:...'
"""

from __future__ import annotations

import difflib
import hashlib
import json
import logging
import threading
from typing import Dict, Iterator, List, Optional

from ..errors import SchemaError, UnknownEntityError
from ..store.base import IndexSpec, TableSpec
from .types import EntityDef, RelationKind

logger = logging.getLogger(__name__)


class RegistryFrozenError(SchemaError):
    """Raised when attempting to modify a frozen registry."""
    pass


class DuplicateRegistrationError(SchemaError):
    """Raised when attempting to register an entity name twice."""
    pass


class SchemaRegistry:
    """Registry of entity definitions.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free

    Attributes:
        frozen: Whether the registry is frozen (immutable)
        fingerprint: SHA-256 hash of the model (computed on freeze)
    """

    def __init__(self) -> None:
        self._entities: Dict[str, EntityDef] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        return self._fingerprint

    def register(self, entity: EntityDef) -> None:
        """Register an entity definition.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateRegistrationError: If the name is already registered
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register entity '{entity.name}': registry is frozen"
                )
            if entity.name in self._entities:
                raise DuplicateRegistrationError(
                    f"Entity '{entity.name}' is already registered"
                )
            self._entities[entity.name] = entity
            logger.debug(f"Registered entity: {entity.name} (key={entity.key_path})")

    def get(self, name: str) -> EntityDef:
        """Get an entity by name.

        Raises:
            UnknownEntityError: If no entity has that name
        """
        entity = self._entities.get(name)
        if entity is None:
            suggestions = difflib.get_close_matches(name, list(self._entities), n=3)
            raise UnknownEntityError(name, suggestions)
        return entity

    def __contains__(self, name: object) -> bool:
        return name in self._entities

    def __iter__(self) -> Iterator[EntityDef]:
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    def names(self) -> List[str]:
        return list(self._entities)

    def freeze(self) -> str:
        """Validate the model, freeze the registry and compute fingerprint.

        Returns:
            Schema fingerprint string

        Raises:
            RegistryFrozenError: If already frozen
            SchemaError: If cross-entity validation fails
        """
        errors = self.validate_all()
        if errors:
            raise SchemaError(f"Schema has {len(errors)} error(s)", errors)

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")
            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Schema registry frozen with {len(self._entities)} entities, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def validate_all(self) -> list[str]:
        """Validate relations across entities.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        for entity in self._entities.values():
            for rel in entity.relations:
                target = self._entities.get(rel.target)
                if target is None:
                    errors.append(
                        f"Relation '{entity.name}.{rel.name}' targets unknown entity '{rel.target}'"
                    )
                    continue
                missing = [n for n in rel.references if target.get_field(n) is None]
                if missing:
                    errors.append(
                        f"Relation '{entity.name}.{rel.name}' references unknown "
                        f"fields {missing} on '{target.name}'"
                    )
                    continue
                if rel.kind is RelationKind.TO_ONE_OWNING:
                    if tuple(rel.references) != target.key_path and not (
                        len(rel.references) == 1
                        and any(f.name == rel.references[0] for f in target.unique_fields)
                    ):
                        errors.append(
                            f"Relation '{entity.name}.{rel.name}' must reference the key "
                            f"or a unique field of '{target.name}'"
                        )
                elif tuple(rel.fields) != entity.key_path:
                    errors.append(
                        f"Relation '{entity.name}.{rel.name}' must use the key of "
                        f"'{entity.name}' as its fields"
                    )
        return errors

    def table_specs(self) -> List[TableSpec]:
        """Store table layout: one table per entity, one index per unique field."""
        specs = []
        for entity in self._entities.values():
            indexes = tuple(
                IndexSpec(name=entity.index_name(f.name), key_path=(f.name,), unique=True)
                for f in entity.unique_fields
            )
            specs.append(TableSpec(name=entity.name, key_path=entity.key_path, indexes=indexes))
        return specs

    def _compute_fingerprint(self) -> str:
        schema_dict = self.to_dict()
        canonical = json.dumps(schema_dict, sort_keys=True, separators=(',', ':'))
        hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert registry to dictionary representation, sorted by name."""
        return {
            "entities": [
                self._entities[name].to_dict() for name in sorted(self._entities)
            ],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict) -> SchemaRegistry:
        """Create registry from dictionary representation (not frozen)."""
        registry = cls()
        for entity_data in data.get("entities", []):
            registry.register(EntityDef.from_dict(entity_data))
        return registry

    @classmethod
    def from_json(cls, json_str: str) -> SchemaRegistry:
        return cls.from_dict(json.loads(json_str))
