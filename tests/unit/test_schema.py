"""
Unit tests for schema types.

Tests cover:
- FieldDef creation and validation
- RelationDef scoping
- EntityDef key resolution and validation
- Serialization round trip through dicts
"""

import pytest

from kvorm.schema.types import (
    EntityDef,
    FieldDef,
    FieldKind,
    Generated,
    RelationDef,
    RelationKind,
    field,
    relation,
)


class TestFieldDef:
    """Tests for FieldDef."""

    def test_create_string_field(self):
        """String field can be created from a kind name."""
        f = field("title", "string", is_required=True)
        assert f.name == "title"
        assert f.kind == FieldKind.STRING
        assert f.is_required is True
        assert f.is_list is False

    def test_generated_default_is_parsed(self):
        """Call strings become Generated members."""
        f = field("id", "int", is_id=True, default="autoincrement()")
        assert f.default is Generated.AUTOINCREMENT
        assert f.has_default

    def test_literal_default_is_kept(self):
        """Other defaults stay literal."""
        f = field("status", "string", default="draft")
        assert f.default == "draft"

    def test_invalid_kind_raises(self):
        """Unknown kind names list the valid ones."""
        with pytest.raises(ValueError, match="Invalid field kind"):
            field("x", "text")

    def test_list_key_raises(self):
        """Key fields cannot be lists."""
        with pytest.raises(ValueError, match="cannot be a list"):
            field("ids", "int", is_id=True, is_list=True)

    def test_autoincrement_requires_integer(self):
        """autoincrement() only applies to integer kinds."""
        with pytest.raises(ValueError, match="autoincrement"):
            field("id", "string", is_id=True, default="autoincrement()")

    def test_to_dict_round_trip(self):
        """to_dict/from_dict preserve every attribute."""
        f = field("tags", "string", is_list=True, default="uuid()", description="labels")
        assert FieldDef.from_dict(f.to_dict()) == f


class TestRelationDef:
    """Tests for RelationDef."""

    def test_scope_maps_fields_to_references(self):
        """Scope is {references[i]: record[fields[i]]}."""
        rel = relation("posts", "Post", "to_many", ("id",), ("authorId",))
        assert rel.scope({"id": 7, "name": "Ada"}) == {"authorId": 7}

    def test_scope_with_null_field_is_absent(self):
        """A null local value means the relation is absent."""
        rel = relation("author", "User", "to_one_owning", ("authorId",), ("id",))
        assert rel.scope({"id": 1, "authorId": None}) is None

    def test_misaligned_fields_raise(self):
        """fields and references must have the same length."""
        with pytest.raises(ValueError, match="aligned"):
            relation("x", "Y", "to_many", ("a", "b"), ("c",))

    def test_cascade_on_owning_side_raises(self):
        """Cascade belongs to the referenced side."""
        with pytest.raises(ValueError, match="cascade_delete"):
            relation("author", "User", "to_one_owning", ("authorId",), ("id",), cascade_delete=True)

    def test_kind_flags(self):
        """is_owning and is_list follow the kind."""
        owning = relation("author", "User", RelationKind.TO_ONE_OWNING, ("authorId",), ("id",))
        many = relation("posts", "Post", RelationKind.TO_MANY, ("id",), ("authorId",))
        assert owning.is_owning and not owning.is_list
        assert many.is_list and not many.is_owning

    def test_to_dict_round_trip(self):
        rel = relation("profile", "Profile", "to_one_referenced", ("id",), ("userId",), cascade_delete=True)
        assert RelationDef.from_dict(rel.to_dict()) == rel


class TestEntityDef:
    """Tests for EntityDef."""

    def test_key_from_id_field(self):
        """The is_id field is the key."""
        entity = EntityDef(name="User", fields=(field("id", "int", is_id=True), field("name", "string")))
        assert entity.key_path == ("id",)
        assert entity.compound_key_name is None

    def test_key_falls_back_to_first_unique(self):
        """Without is_id, the first unique field is the key."""
        entity = EntityDef(
            name="Tag",
            fields=(field("label", "string", is_unique=True), field("slug", "string", is_unique=True)),
        )
        assert entity.key_path == ("label",)
        assert [f.name for f in entity.unique_fields] == ["slug"]

    def test_composite_key(self):
        """Explicit composite key gives a compound selector name."""
        entity = EntityDef(
            name="Membership",
            fields=(field("userId", "int"), field("groupId", "int")),
            primary_key=("userId", "groupId"),
        )
        assert entity.key_path == ("userId", "groupId")
        assert entity.compound_key_name == "userId_groupId"
        assert entity.key_of({"userId": 1, "groupId": 2}) == (1, 2)

    def test_entity_without_key_raises(self):
        """Some field must identify records."""
        with pytest.raises(ValueError, match="no primary key"):
            EntityDef(name="Loose", fields=(field("name", "string"),))

    def test_duplicate_names_raise(self):
        """Field and relation names share one namespace."""
        with pytest.raises(ValueError, match="Duplicate"):
            EntityDef(
                name="User",
                fields=(field("id", "int", is_id=True), field("posts", "int")),
                relations=(relation("posts", "Post", "to_many", ("id",), ("authorId",)),),
            )

    def test_relation_with_unknown_local_field_raises(self):
        with pytest.raises(ValueError, match="unknown fields"):
            EntityDef(
                name="Post",
                fields=(field("id", "int", is_id=True),),
                relations=(relation("author", "User", "to_one_owning", ("authorId",), ("id",)),),
            )

    def test_index_name(self):
        assert EntityDef.index_name("userId") == "userIdIndex"

    def test_sample_entities(self, registry):
        """Sample model exposes relation groupings."""
        user = registry.get("User")
        assert [r.name for r in user.cascade_relations] == ["profile", "posts", "comments"]
        assert user.owning_relations == []
        post = registry.get("Post")
        assert [r.name for r in post.owning_relations] == ["author"]
        assert [f.name for f in post.list_fields] == ["tags", "numberArr"]

    def test_to_dict_round_trip(self, registry):
        for entity in registry:
            assert EntityDef.from_dict(entity.to_dict()) == entity
