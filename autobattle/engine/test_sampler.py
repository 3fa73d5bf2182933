"""Tests for state sampling, parsing and throttling."""

import pytest

from autobattle.e2e.harness import FakeDocument
from autobattle.engine.probe import SafeProbe
from autobattle.engine.progress import SampledState
from autobattle.engine.sampler import StateSampler, Throttle, parse_points, parse_turn_digits


class TestParsing:
    def test_turn_digits(self):
        assert parse_turn_digits(["num-info1", "num-info2"]) == 12
        assert parse_turn_digits(["prt-num num-info0", "", None, "num-info7"]) == 7
        assert parse_turn_digits([]) == 0

    def test_points(self):
        assert parse_points("1,234,567pt") == 1234567
        assert parse_points(" 800pt ") == 800
        assert parse_points("") == 0
        assert parse_points("--") == 0
        assert parse_points(None) is None


class TestStateSampler:
    @pytest.mark.asyncio
    async def test_sample(self):
        document = FakeDocument()
        document.set_state(turn=3, honors=42_000)
        sampler = StateSampler(SafeProbe(document))

        state = await sampler.sample()

        assert state == SampledState(3, 42_000)
        assert sampler.last is state
        assert sampler.samples == 1

    @pytest.mark.asyncio
    async def test_never_raises(self):
        sampler = StateSampler(SafeProbe(FakeDocument(fail=True)))
        assert await sampler.sample() == SampledState(0, None)


class TestThrottle:
    def test_interval(self):
        throttle = Throttle(3000)
        assert throttle.ready(0) is True
        assert throttle.ready(2999) is False
        assert throttle.ready(3000) is True
        throttle.reset()
        assert throttle.ready(3001) is True
