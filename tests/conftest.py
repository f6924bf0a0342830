"""
Shared fixtures: a blog-style sample model and clients over it.

Entities:
    User -1:1- Profile (cascade)
    User -1:n- Post (cascade), User -1:n- Comment (cascade)
    Post -1:n- Comment (cascade)
    AllFieldScalarTypes: every field kind, scalar and list
"""

import tempfile

import pytest
import pytest_asyncio

from kvorm.client import Client
from kvorm.config import Settings, StoreBackend
from kvorm.schema.registry import SchemaRegistry
from kvorm.schema.types import EntityDef, field, relation
from kvorm.store.memory import InMemoryStore
from kvorm.store.sqlite import SqliteStore


def build_registry() -> SchemaRegistry:
    """Build and freeze the sample model."""
    registry = SchemaRegistry()
    registry.register(
        EntityDef(
            name="User",
            fields=(
                field("id", "int", is_id=True, default="autoincrement()"),
                field("name", "string", is_required=True),
            ),
            relations=(
                relation("profile", "Profile", "to_one_referenced", ("id",), ("userId",), cascade_delete=True),
                relation("posts", "Post", "to_many", ("id",), ("authorId",), cascade_delete=True),
                relation("comments", "Comment", "to_many", ("id",), ("userId",), cascade_delete=True),
            ),
        )
    )
    registry.register(
        EntityDef(
            name="Profile",
            fields=(
                field("id", "int", is_id=True, default="autoincrement()"),
                field("bio", "string"),
                field("userId", "int", is_unique=True, is_required=True),
            ),
            relations=(relation("user", "User", "to_one_owning", ("userId",), ("id",)),),
        )
    )
    registry.register(
        EntityDef(
            name="Post",
            fields=(
                field("id", "int", is_id=True, default="autoincrement()"),
                field("title", "string", is_required=True),
                field("authorId", "int"),
                field("tags", "string", is_list=True),
                field("numberArr", "int", is_list=True),
            ),
            relations=(
                relation("author", "User", "to_one_owning", ("authorId",), ("id",)),
                relation("comments", "Comment", "to_many", ("id",), ("postId",), cascade_delete=True),
            ),
        )
    )
    registry.register(
        EntityDef(
            name="Comment",
            fields=(
                field("id", "string", is_id=True, default="cuid()"),
                field("postId", "int", is_required=True),
                field("userId", "int", is_required=True),
                field("text", "string", is_required=True),
            ),
            relations=(
                relation("post", "Post", "to_one_owning", ("postId",), ("id",)),
                relation("user", "User", "to_one_owning", ("userId",), ("id",)),
            ),
        )
    )
    registry.register(
        EntityDef(
            name="AllFieldScalarTypes",
            fields=(
                field("id", "int", is_id=True, default="autoincrement()"),
                field("string", "string"),
                field("strings", "string", is_list=True),
                field("boolean", "boolean"),
                field("booleans", "boolean", is_list=True),
                field("bigInt", "bigint"),
                field("bigIntegers", "bigint", is_list=True),
                field("float", "float"),
                field("floats", "float", is_list=True),
                field("decimal", "decimal"),
                field("decimals", "decimal", is_list=True),
                field("dateTime", "datetime"),
                field("dateTimes", "datetime", is_list=True),
                field("json", "json"),
                field("jsonS", "json", is_list=True),
                field("bytes", "bytes"),
                field("manyBytes", "bytes", is_list=True),
            ),
        )
    )
    registry.freeze()
    return registry


@pytest.fixture
def registry():
    """Frozen sample registry."""
    return build_registry()


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest_asyncio.fixture
async def client(registry):
    """Open client over an in-memory store."""
    client = Client(registry, InMemoryStore(), Settings(database_name="test"))
    await client.open()
    yield client
    await client.close()


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def any_client(request, registry, data_dir):
    """Open client over each store backend."""
    if request.param == "memory":
        store = InMemoryStore()
        settings = Settings(database_name="test")
    else:
        store = SqliteStore(data_dir, wal_mode=True)
        settings = Settings(database_name="test", store_backend=StoreBackend.SQLITE, data_dir=data_dir)
    client = Client(registry, store, settings)
    await client.open()
    yield client
    await client.close()
