"""
Unit tests for transaction scope analysis.

Tests cover every clause shape that can pull in a related table.
"""

from kvorm.engine import scope


class TestScope:
    """Tests for the tables_for_* functions."""

    def test_plain_find_is_own_table(self, registry):
        assert scope.tables_for_find(registry, "User", None) == {"User"}
        assert scope.tables_for_find(registry, "User", {"where": {"name": "Ada"}}) == {"User"}

    def test_where_relations_through_logic(self, registry):
        """Relations nested in AND/OR/NOT and is/every are followed."""
        where = {
            "OR": [
                {"posts": {"some": {"comments": {"every": {"text": "x"}}}}},
                {"NOT": {"profile": {"is": {"bio": None}}}},
            ]
        }
        assert scope.tables_for_where(registry, "User", where) == {
            "User",
            "Post",
            "Comment",
            "Profile",
        }

    def test_bare_to_one_filter_is_followed(self, registry):
        where = {"author": {"profile": {"isNot": None}}}
        assert scope.tables_for_where(registry, "Post", where) == {"Post", "User", "Profile"}

    def test_order_by_relations(self, registry):
        order_by = [{"post": {"author": {"name": "asc"}}}, {"text": "desc"}]
        assert scope.tables_for_order_by(registry, "Comment", order_by) == {
            "Comment",
            "Post",
            "User",
        }
        assert scope.tables_for_order_by(registry, "User", {"posts": {"_count": "asc"}}) == {
            "User",
            "Post",
        }

    def test_select_and_include(self, registry):
        query = {
            "select": {"id": True, "posts": {"include": {"comments": True}}},
            "include": {"profile": False},
        }
        assert scope.tables_for_find(registry, "User", query) == {"User", "Post", "Comment"}

    def test_create_with_nested_writes(self, registry):
        data = {
            "name": "Ada",
            "profile": {"create": {"bio": "hi"}},
            "posts": {
                "createMany": {"data": [{"title": "a"}]},
                "connect": [{"id": 1}],
            },
        }
        assert scope.tables_for_create(registry, "User", data) == {"User", "Profile", "Post"}

    def test_create_with_raw_foreign_keys(self, registry):
        """Fully supplied raw FKs add the referenced tables."""
        assert scope.tables_for_create(registry, "Comment", {"postId": 1, "userId": 2, "text": "x"}) == {
            "Comment",
            "Post",
            "User",
        }
        assert scope.tables_for_create(registry, "Post", {"title": "t"}) == {"Post"}

    def test_create_query_includes_projection(self, registry):
        query = {"data": {"title": "t"}, "include": {"comments": True}}
        assert scope.tables_for_create_query(registry, "Post", query) == {"Post", "Comment"}

    def test_delete_follows_cascades(self, registry):
        """User cascades to Profile, Post and Comment (also through Post)."""
        assert scope.tables_for_delete(registry, "User", {"where": {"id": 1}}) == {
            "User",
            "Profile",
            "Post",
            "Comment",
        }
        assert scope.tables_for_delete(registry, "Comment", None) == {"Comment"}

    def test_update_uses_find_scope(self, registry):
        query = {"where": {"id": 1}, "data": {"title": "x"}, "include": {"author": True}}
        assert scope.tables_for_update(registry, "Post", query) == {"Post", "User"}
