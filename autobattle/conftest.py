"""Shared fixtures for engine and E2E tests."""

import pytest

from autobattle.e2e.harness import BattleHarness
from autobattle.engine.progress import Mode


@pytest.fixture
def harness():
    """Provide a hands-off BattleHarness on a live battle page."""
    return BattleHarness()


@pytest.fixture
def per_turn_harness():
    """Provide a per-turn BattleHarness on a live battle page."""
    return BattleHarness(mode=Mode.PER_TURN)
