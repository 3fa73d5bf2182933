"""Tests for SafeProbe and the probe protocols."""

import asyncio

import pytest

from autobattle.e2e.harness import FakeClock, FakeDocument
from autobattle.engine.probe import DocumentProbe, SafeProbe
from autobattle.engine.progress import SampledState
from autobattle.errors import NavigationInterrupted


class TestSafeProbe:
    """Every failure becomes a neutral default."""

    def test_fake_document_satisfies_protocol(self):
        assert isinstance(FakeDocument(), DocumentProbe)

    @pytest.mark.asyncio
    async def test_defaults_on_failure(self):
        probe = SafeProbe(FakeDocument(fail=True))

        assert await probe.exists(".btn-auto") is False
        assert await probe.read_text(".txt-popup-body") == ""
        assert await probe.sample_battle_state() == SampledState()
        assert await probe.click(".btn-auto") is False
        assert await probe.reload() is False
        assert probe.url() == ""
        assert probe.failures == 6

    @pytest.mark.asyncio
    async def test_passes_through(self):
        clock = FakeClock()
        document = FakeDocument(present=[".btn-auto"], texts={".title": "Battle"}, clock=clock)
        probe = SafeProbe(document)

        assert await probe.exists(".btn-auto", 5000) is True
        assert await probe.exists(".missing", 300) is False
        assert clock.now == 300
        assert await probe.read_text(".title") == "Battle"
        assert await probe.click(".btn-auto") is True
        assert await probe.reload() is True
        assert document.clicks == [".btn-auto"]
        assert probe.failures == 0

    @pytest.mark.asyncio
    async def test_navigation_race_absorbed(self):
        class Navigating(FakeDocument):
            async def click(self, marker):
                raise NavigationInterrupted("context destroyed")

        probe = SafeProbe(Navigating(present=[".btn-auto"]))
        assert await probe.click(".btn-auto") is False
        assert probe.failures == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        class Cancelled(FakeDocument):
            async def exists(self, marker, timeout_ms=0, require_visible=False):
                raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await SafeProbe(Cancelled()).exists(".btn-auto")

    @pytest.mark.asyncio
    async def test_sample_coerces_raw_values(self):
        class Raw(FakeDocument):
            async def sample_battle_state(self):
                return {"turn": "5", "honors": None}

        assert await SafeProbe(Raw()).sample_battle_state() == SampledState(5, None)
