"""
YAML/JSON schema files for kvorm.

A schema file lists entities with their fields and relations. Parsing
builds a SchemaRegistry, collecting every definition error instead of
stopping at the first one.

Example schema:
    entities:
      - name: User
        fields:
          - {name: id, kind: int, is_id: true, default: autoincrement()}
          - {name: name, kind: string, is_required: true}
        relations:
          - name: posts
            target: Post
            kind: to_many
            fields: [id]
            references: [authorId]
            cascade_delete: true
      - name: Post
        fields:
          - {name: id, kind: int, is_id: true, default: autoincrement()}
          - {name: authorId, kind: int}
          - {name: tags, kind: string, is_list: true}
        relations:
          - {name: author, target: User, kind: to_one_owning, fields: [authorId], references: [id]}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from ..errors import SchemaError
from .registry import SchemaRegistry
from .types import EntityDef, FieldDef, RelationDef

# Short spellings accepted in schema files
_FIELD_ALIASES = {
    "id": "is_id",
    "unique": "is_unique",
    "required": "is_required",
    "list": "is_list",
}


def _normalize_field(data: dict[str, Any]) -> dict[str, Any]:
    return {_FIELD_ALIASES.get(key, key): value for key, value in data.items()}


def parse_entity(data: dict[str, Any]) -> EntityDef:
    """Parse one entity mapping.

    Raises:
        ValueError: If the definition is invalid
        KeyError: If a mandatory key is missing
    """
    fields = tuple(FieldDef.from_dict(_normalize_field(f)) for f in data.get("fields", []))
    relations = tuple(RelationDef.from_dict(r) for r in data.get("relations", []))
    primary_key = data.get("primary_key")
    return EntityDef(
        name=data["name"],
        fields=fields,
        relations=relations,
        primary_key=tuple(primary_key) if primary_key else None,
        description=data.get("description", ""),
    )


def parse_schema(data: dict[str, Any], freeze: bool = True) -> SchemaRegistry:
    """Parse a complete schema from dict.

    Raises:
        SchemaError: With every collected definition error
    """
    errors: list[str] = []
    registry = SchemaRegistry()
    for index, entity_data in enumerate(data.get("entities", [])):
        label = entity_data.get("name") or f"#{index}"
        try:
            registry.register(parse_entity(entity_data))
        except KeyError as e:
            errors.append(f"Entity {label}: missing key {e}")
        except (ValueError, SchemaError) as e:
            errors.append(f"Entity {label}: {e}")
    if errors:
        raise SchemaError(f"Schema has {len(errors)} error(s)", errors)
    if freeze:
        registry.freeze()
    return registry


def parse_yaml(yaml_str: str, freeze: bool = True) -> SchemaRegistry:
    """Parse schema from YAML string."""
    data = yaml.safe_load(yaml_str)
    return parse_schema(data or {}, freeze=freeze)


def parse_json(json_str: str, freeze: bool = True) -> SchemaRegistry:
    """Parse schema from JSON string."""
    data = json.loads(json_str)
    return parse_schema(data or {}, freeze=freeze)


def load_schema(path: str | Path, freeze: bool = True) -> SchemaRegistry:
    """Load a schema file, choosing the parser by extension."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        return parse_json(text, freeze=freeze)
    return parse_yaml(text, freeze=freeze)
