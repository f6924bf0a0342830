"""
Integration tests for where filters and orderBy.
"""

import pytest

from kvorm.errors import QueryError


@pytest.fixture
def titles():
    return ["Alpha", "beta", "Gamma", "delta"]


async def seed_posts(client, titles):
    await client.user.create_many({"data": [{"name": "Ada"}, {"name": "Grace"}]})
    await client.post.create_many(
        {
            "data": [
                {"title": titles[0], "authorId": 2, "tags": ["a", "b"], "numberArr": [1, 2]},
                {"title": titles[1], "authorId": 1, "tags": ["b"], "numberArr": [3]},
                {"title": titles[2], "tags": []},
                {"title": titles[3], "authorId": 1, "tags": ["c"], "numberArr": [2, 1]},
            ]
        }
    )


def names(records, key="title"):
    return [r[key] for r in records]


class TestFieldFilters:
    """Tests for scalar and list field conditions."""

    @pytest.mark.asyncio
    async def test_equality_and_null(self, any_client, titles):
        await seed_posts(any_client, titles)
        assert names(await any_client.post.find_many({"where": {"title": "beta"}})) == ["beta"]
        assert names(await any_client.post.find_many({"where": {"authorId": None}})) == ["Gamma"]
        not_null = await any_client.post.find_many({"where": {"authorId": {"not": None}}})
        assert names(not_null) == ["Alpha", "beta", "delta"]

    @pytest.mark.asyncio
    async def test_not_excludes_nulls(self, any_client, titles):
        """Comparisons never match a null value."""
        await seed_posts(any_client, titles)
        assert names(await any_client.post.find_many({"where": {"authorId": {"not": 1}}})) == ["Alpha"]
        assert names(await any_client.post.find_many({"where": {"authorId": {"lt": 5}}})) == [
            "Alpha",
            "beta",
            "delta",
        ]

    @pytest.mark.asyncio
    async def test_string_operators(self, any_client, titles):
        await seed_posts(any_client, titles)
        post = any_client.post
        assert names(await post.find_many({"where": {"title": {"contains": "ta"}}})) == ["beta", "delta"]
        assert names(await post.find_many({"where": {"title": {"startsWith": "a"}}})) == []
        insensitive = {"title": {"startsWith": "a", "mode": "insensitive"}}
        assert names(await post.find_many({"where": insensitive})) == ["Alpha"]
        assert names(await post.find_many({"where": {"title": {"endsWith": "ma"}}})) == ["Gamma"]
        ranged = {"title": {"gte": "B", "lt": "a"}}
        assert names(await post.find_many({"where": ranged})) == ["Gamma"]

    @pytest.mark.asyncio
    async def test_membership(self, any_client, titles):
        await seed_posts(any_client, titles)
        post = any_client.post
        assert names(await post.find_many({"where": {"id": {"in": [2, 4, 9]}}})) == ["beta", "delta"]
        assert names(await post.find_many({"where": {"id": {"notIn": [1, 2]}}})) == ["Gamma", "delta"]
        assert await post.find_many({"where": {"id": {"in": []}}}) == []

    @pytest.mark.asyncio
    async def test_list_operators(self, any_client, titles):
        await seed_posts(any_client, titles)
        post = any_client.post
        assert names(await post.find_many({"where": {"tags": {"has": "b"}}})) == ["Alpha", "beta"]
        assert names(await post.find_many({"where": {"tags": {"hasEvery": ["a", "b"]}}})) == ["Alpha"]
        assert names(await post.find_many({"where": {"tags": {"hasSome": ["a", "c"]}}})) == ["Alpha", "delta"]
        assert names(await post.find_many({"where": {"tags": {"isEmpty": True}}})) == ["Gamma"]
        assert names(await post.find_many({"where": {"numberArr": {"equals": [1, 2]}}})) == ["Alpha", "delta"]
        assert names(await post.find_many({"where": {"numberArr": None}})) == ["Gamma"]

    @pytest.mark.asyncio
    async def test_logical_combinators(self, any_client, titles):
        await seed_posts(any_client, titles)
        post = any_client.post
        either = {"OR": [{"title": "beta"}, {"authorId": 2}]}
        assert names(await post.find_many({"where": either})) == ["Alpha", "beta"]
        both = {"AND": [{"authorId": 1}, {"tags": {"has": "c"}}]}
        assert names(await post.find_many({"where": both})) == ["delta"]
        neither = {"NOT": [{"title": "beta"}, {"authorId": None}]}
        assert names(await post.find_many({"where": neither})) == ["Alpha", "delta"]
        assert await post.find_many({"where": {"OR": []}}) == []

    @pytest.mark.asyncio
    async def test_filtering_is_idempotent(self, any_client, titles):
        await seed_posts(any_client, titles)
        where = {"OR": [{"tags": {"has": "b"}}, {"author": {"name": "Ada"}}]}
        once = await any_client.post.find_many({"where": where})
        twice = await any_client.post.find_many({"where": {"AND": [where, where]}})
        assert once == twice
        assert names(once) == ["Alpha", "beta", "delta"]

    @pytest.mark.asyncio
    async def test_unknown_keys_are_ignored(self, any_client, titles):
        await seed_posts(any_client, titles)
        assert len(await any_client.post.find_many({"where": {"nope": 1}})) == 4

    @pytest.mark.asyncio
    async def test_unknown_operator_raises(self, any_client, titles):
        await seed_posts(any_client, titles)
        with pytest.raises(QueryError):
            await any_client.post.find_many({"where": {"title": {"like": "%a"}}})
        with pytest.raises(QueryError):
            await any_client.post.find_many({"where": {"tags": {"contains": "a"}}})


class TestOrderBy:
    """Tests for orderBy."""

    @pytest.mark.asyncio
    async def test_single_field(self, any_client, titles):
        await seed_posts(any_client, titles)
        asc = await any_client.post.find_many({"orderBy": {"title": "asc"}})
        assert names(asc) == ["Alpha", "Gamma", "beta", "delta"]
        desc = await any_client.post.find_many({"orderBy": {"title": "desc"}})
        assert names(desc) == list(reversed(names(asc)))

    @pytest.mark.asyncio
    async def test_reversed_direction_reverses_with_nulls(self, any_client, titles):
        """Nulls go last ascending and first descending."""
        await seed_posts(any_client, titles)
        order = [{"authorId": "asc"}, {"id": "asc"}]
        asc = await any_client.post.find_many({"orderBy": order})
        assert names(asc) == ["beta", "delta", "Alpha", "Gamma"]
        reverse = [{"authorId": "desc"}, {"id": "desc"}]
        desc = await any_client.post.find_many({"orderBy": reverse})
        assert names(desc) == list(reversed(names(asc)))

    @pytest.mark.asyncio
    async def test_explicit_nulls_placement(self, any_client, titles):
        await seed_posts(any_client, titles)
        order = [{"authorId": {"sort": "asc", "nulls": "first"}}, {"id": "asc"}]
        result = await any_client.post.find_many({"orderBy": order})
        assert names(result) == ["Gamma", "beta", "delta", "Alpha"]

    @pytest.mark.asyncio
    async def test_ties_keep_scan_order(self, any_client, titles):
        await seed_posts(any_client, titles)
        result = await any_client.post.find_many({"where": {"authorId": 1}, "orderBy": {"authorId": "desc"}})
        assert names(result) == ["beta", "delta"]

    @pytest.mark.asyncio
    async def test_to_one_relation(self, any_client, titles):
        await seed_posts(any_client, titles)
        order = [{"author": {"name": "desc"}}, {"id": "asc"}]
        result = await any_client.post.find_many({"orderBy": order})
        assert names(result) == ["Gamma", "Alpha", "beta", "delta"]

    @pytest.mark.asyncio
    async def test_to_many_count(self, any_client, titles):
        await seed_posts(any_client, titles)
        users = await any_client.user.find_many({"orderBy": {"posts": {"_count": "desc"}}})
        assert names(users, "name") == ["Ada", "Grace"]
        users = await any_client.user.find_many({"orderBy": {"posts": {"_count": "asc"}}})
        assert names(users, "name") == ["Grace", "Ada"]

    @pytest.mark.asyncio
    async def test_find_first_uses_order(self, any_client, titles):
        await seed_posts(any_client, titles)
        first = await any_client.post.find_first({"where": {"authorId": 1}, "orderBy": {"id": "desc"}})
        assert first["title"] == "delta"

    @pytest.mark.asyncio
    async def test_invalid_order_by_raises(self, any_client, titles):
        await seed_posts(any_client, titles)
        with pytest.raises(QueryError, match="Empty orderBy"):
            await any_client.post.find_many({"orderBy": {}})
        with pytest.raises(QueryError):
            await any_client.post.find_many({"orderBy": {"title": "up"}})
        with pytest.raises(QueryError):
            await any_client.post.find_many({"orderBy": {"tags": "asc"}})
        with pytest.raises(QueryError):
            await any_client.user.find_many({"orderBy": {"posts": {"title": "asc"}}})
