"""
Unit tests for change notifications.
"""

import pytest

from kvorm.engine.events import ChangeEvent, ChangeKind, EventEmitter


class TestEventEmitter:
    """Tests for EventEmitter."""

    @pytest.fixture
    def emitter(self):
        return EventEmitter("User")

    @pytest.mark.asyncio
    async def test_subscribe_and_emit(self, emitter):
        received = []
        emitter.subscribe("create", received.append)
        await emitter.emit(ChangeKind.CREATE)
        await emitter.emit("delete")
        assert received == [ChangeEvent(entity="User", kind=ChangeKind.CREATE)]

    @pytest.mark.asyncio
    async def test_subscribe_many_kinds(self, emitter):
        received = []
        emitter.subscribe(["create", ChangeKind.UPDATE], lambda e: received.append(e.kind))
        await emitter.emit("update")
        await emitter.emit("create")
        assert received == [ChangeKind.UPDATE, ChangeKind.CREATE]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, emitter):
        received = []
        emitter.subscribe(["create", "delete"], received.append)
        emitter.unsubscribe("create", received.append)
        assert emitter.subscriber_count("create") == 0
        assert emitter.subscriber_count("delete") == 1
        await emitter.emit("create")
        assert received == []

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self, emitter):
        received = []

        async def callback(event):
            received.append(event.kind)

        emitter.subscribe("delete", callback)
        await emitter.emit("delete")
        assert received == [ChangeKind.DELETE]

    @pytest.mark.asyncio
    async def test_failing_callback_is_logged(self, emitter, caplog):
        """One failing subscriber does not stop the others."""
        received = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        emitter.subscribe("create", broken)
        emitter.subscribe("create", received.append)
        await emitter.emit("create")
        assert len(received) == 1
        assert "Change subscriber failed" in caplog.text

    def test_invalid_kind_raises(self, emitter):
        with pytest.raises(ValueError, match="Invalid change kind"):
            emitter.subscribe("upsert", print)
