"""Tests for stall and stuck-UI detection."""

from autobattle.engine.watchdog import UiMissCounter, idle_ms, is_stalled


class TestStall:
    def test_threshold_is_exclusive(self):
        assert is_stalled(12_000, 0, 12_000) is False
        assert is_stalled(12_001, 0, 12_000) is True

    def test_idle_never_negative(self):
        assert idle_ms(100, 500) == 0.0
        assert idle_ms(900, 500) == 400


class TestUiMissCounter:
    def test_consecutive_misses(self):
        counter = UiMissCounter(threshold=3)
        assert counter.observe(False) is False
        assert counter.observe(False) is False
        assert counter.observe(True) is False
        assert counter.misses == 0
        assert [counter.observe(False) for _ in range(3)] == [False, False, True]

    def test_reset(self):
        counter = UiMissCounter()
        for _ in range(4):
            counter.observe(False)
        counter.reset()
        assert counter.misses == 0
