"""
Unit tests for the SQLite record store and its record codec.

Tests cover:
- Open, upgrade and persisted table layout
- Table operations and unique indexes
- Commit, rollback and scope
- Codec round trip of non-JSON values
"""

import base64
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from kvorm.store import codec
from kvorm.store.base import (
    ConstraintError,
    IndexSpec,
    ReadOnlyTransactionError,
    ScopeError,
    StoreError,
    TableSpec,
    TransactionMode,
)
from kvorm.store.sqlite import SqliteStore

RW = TransactionMode.READWRITE
RO = TransactionMode.READONLY

USERS = TableSpec(
    name="User",
    key_path=("id",),
    indexes=(IndexSpec(name="emailIndex", key_path=("email",), unique=True),),
)
MEMBERS = TableSpec(name="Membership", key_path=("userId", "groupId"))


def upgrade(handle, old_version, new_version):
    for spec in (USERS, MEMBERS):
        if spec.name not in handle.table_names:
            handle.create_table(spec)


class TestCodec:
    """Tests for the record codec."""

    def test_round_trip_special_values(self):
        record = {
            "at": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            "raw": b"\x00\xff",
            "amount": Decimal("12.50"),
            "nested": {"list": [Decimal("1"), b"x"]},
            "plain": [1, "a", None, True],
        }
        assert codec.loads(codec.dumps(record)) == record

    def test_bytes_are_base64_tagged(self):
        encoded = codec.dumps(b"hi")
        assert base64.b64encode(b"hi").decode() in encoded
        assert "$kv" in encoded

    def test_dumps_is_key_sorted(self):
        assert codec.dumps({"b": 1, "a": 2}) == '{"a":2,"b":1}'


class TestSqliteStore:
    """Tests for SqliteStore."""

    @pytest.fixture
    def store(self, data_dir):
        """Create store in a temporary directory."""
        return SqliteStore(data_dir, wal_mode=True)

    @pytest.mark.asyncio
    async def test_open_creates_file_and_tables(self, store):
        await store.open("db", 1, upgrade)
        assert store.is_open
        assert store.table_names == ["Membership", "User"]
        assert store.get_db_path("db").exists()

    @pytest.mark.asyncio
    async def test_path_is_sanitized(self, store):
        assert store.get_db_path("../evil/db").name == "evildb.db"

    @pytest.mark.asyncio
    async def test_reopen_restores_layout_and_data(self, store, data_dir):
        """A second store on the same directory sees tables and rows."""
        await store.open("db", 1, upgrade)
        async with store.transaction(["User"], RW) as tx:
            await tx.table("User").add({"id": 1, "email": "a@x"})
        await store.close()

        other = SqliteStore(data_dir)
        await other.open("db", 1, lambda *args: pytest.fail("upgrade should not run"))
        assert other.table_names == ["Membership", "User"]
        async with other.transaction(["User"], RO) as tx:
            assert await tx.table("User").get((1,)) == {"id": 1, "email": "a@x"}
            assert (await tx.table("User").index("emailIndex").get("a@x"))["id"] == 1

    @pytest.mark.asyncio
    async def test_older_version_raises(self, store):
        await store.open("db", 2, upgrade)
        await store.close()
        with pytest.raises(StoreError, match="newer"):
            await store.open("db", 1, upgrade)

    @pytest.mark.asyncio
    async def test_composite_keys_and_order(self, store):
        """Keys sort by decoded value, not by encoded text."""
        await store.open("db", 1, upgrade)
        async with store.transaction(["Membership"], RW) as tx:
            table = tx.table("Membership")
            for user_id, group_id in ((10, 1), (2, 5), (2, 3)):
                await table.add({"userId": user_id, "groupId": group_id})
            rows = await table.get_all()
            assert [(r["userId"], r["groupId"]) for r in rows] == [(2, 3), (2, 5), (10, 1)]
            assert await table.last_key() == (10, 1)
            assert await table.get((2, 5)) == {"userId": 2, "groupId": 5}

    @pytest.mark.asyncio
    async def test_constraints(self, store):
        await store.open("db", 1, upgrade)
        async with store.transaction(["User"], RW) as tx:
            table = tx.table("User")
            await table.add({"id": 1, "email": "a@x"})
            await table.add({"id": 2, "email": None})
            await table.add({"id": 3, "email": None})
            with pytest.raises(ConstraintError):
                await table.add({"id": 1, "email": "b@x"})
            with pytest.raises(ConstraintError):
                await table.put({"id": 2, "email": "a@x"})
            await table.put({"id": 2, "email": "c@x"})
            assert (await table.get(2))["email"] == "c@x"

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, store):
        await store.open("db", 1, upgrade)
        with pytest.raises(RuntimeError):
            async with store.transaction(["User"], RW) as tx:
                await tx.table("User").add({"id": 1})
                raise RuntimeError("boom")
        async with store.transaction(["User"], RO) as tx:
            assert await tx.table("User").get_all() == []

    @pytest.mark.asyncio
    async def test_abort_rolls_back(self, store):
        await store.open("db", 1, upgrade)
        async with store.transaction(["User"], RW) as tx:
            await tx.table("User").add({"id": 1})
            tx.abort()
        async with store.transaction(["User"], RO) as tx:
            assert await tx.table("User").get_all() == []

    @pytest.mark.asyncio
    async def test_scope_and_readonly(self, store):
        await store.open("db", 1, upgrade)
        async with store.transaction(["User"], RO) as tx:
            with pytest.raises(ScopeError):
                tx.table("Membership")
            with pytest.raises(ReadOnlyTransactionError):
                await tx.table("User").put({"id": 1})

    @pytest.mark.asyncio
    async def test_special_values_survive_storage(self, store):
        await store.open("db", 1, upgrade)
        record = {
            "id": 1,
            "email": None,
            "at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "blob": b"\x01\x02",
            "price": Decimal("9.99"),
        }
        async with store.transaction(["User"], RW) as tx:
            await tx.table("User").add(record)
        async with store.transaction(["User"], RO) as tx:
            assert await tx.table("User").get(1) == record
