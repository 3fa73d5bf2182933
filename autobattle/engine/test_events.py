"""Tests for domain events and the event bus."""

import pytest
from pydantic import TypeAdapter, ValidationError

from autobattle.engine.events import (
    BossDied,
    DomainEvent,
    EventBus,
    JoinError,
    TurnAdvanced,
    subscription,
)


class TestDomainEvents:
    def test_discriminated_union(self):
        adapter = TypeAdapter(DomainEvent)
        event = adapter.validate_python({"type": "turn_advanced", "turn": 4})
        assert isinstance(event, TurnAdvanced)
        assert event.turn == 4

        event = adapter.validate_python({"type": "join_error", "kind": "full"})
        assert isinstance(event, JoinError)

    def test_negative_turn_rejected(self):
        with pytest.raises(ValidationError):
            TurnAdvanced(turn=-1)

    def test_events_are_frozen(self):
        event = BossDied(url="https://example/attack")
        with pytest.raises(ValidationError):
            event.url = "other"


class TestEventBus:
    """Tests for on/off/once delivery."""

    @pytest.mark.asyncio
    async def test_emit_to_sync_and_async_handlers(self):
        bus = EventBus()
        seen = []

        async def async_handler(event):
            seen.append(("async", event))

        bus.on("tick", lambda e: seen.append(("sync", e)))
        bus.on("tick", async_handler)

        delivered = await bus.emit("tick", 1)

        assert delivered == 2
        assert seen == [("sync", 1), ("async", 1)]

    @pytest.mark.asyncio
    async def test_once_fires_once(self):
        bus = EventBus()
        seen = []
        bus.once("tick", seen.append)

        await bus.emit("tick", 1)
        await bus.emit("tick", 2)

        assert seen == [1]
        assert bus.listener_count("tick") == 0

    @pytest.mark.asyncio
    async def test_off_removes_one_registration(self):
        bus = EventBus()
        seen = []
        bus.on("tick", seen.append)
        bus.on("tick", seen.append)
        bus.off("tick", seen.append)

        await bus.emit("tick", 1)

        assert seen == [1]
        bus.off("unknown", seen.append)

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.on("tick", broken)
        bus.on("tick", seen.append)

        delivered = await bus.emit("tick", 1)

        assert delivered == 1
        assert seen == [1]
        assert bus.handler_failures == 1


class TestSubscription:
    """Scope guard for listener registration."""

    def test_unregisters_on_exit(self):
        bus = EventBus()
        with subscription(bus, [("a", print), ("b", print)]):
            assert bus.listener_count() == 2
        assert bus.listener_count() == 0

    def test_unregisters_on_error(self):
        bus = EventBus()
        with pytest.raises(RuntimeError):
            with subscription(bus, [("a", print)]):
                raise RuntimeError("battle failed")
        assert bus.listener_count() == 0

    def test_partial_registration_is_undone(self):
        class FlakySource(EventBus):
            def on(self, event_type, handler):
                if event_type == "b":
                    raise RuntimeError("cannot register")
                super().on(event_type, handler)

        source = FlakySource()
        with pytest.raises(RuntimeError):
            with subscription(source, [("a", print), ("b", print)]):
                pass
        assert source.listener_count() == 0
