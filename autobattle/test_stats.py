"""Tests for rolling battle statistics."""

from .engine.progress import BattleResult, Outcome
from .stats import HISTORY_LIMIT, BattleStats


def _result(seconds=60.0, turns=5, honors=0, outcome=Outcome.VICTORY, honor_reached=False):
    return BattleResult(
        duration_seconds=seconds, turns=turns, honors=honors,
        outcome=outcome, honor_reached=honor_reached,
    )


class TestBattleStats:
    def test_records_battles(self):
        stats = BattleStats()
        assert stats.record(_result(seconds=60, turns=4)) is True
        assert stats.record(_result(seconds=90, turns=6, outcome=Outcome.DEFEAT)) is True

        assert stats.battle_count == 2
        assert stats.total_turns == 10
        assert stats.average_duration_ms == 75_000
        assert stats.average_turns == 5.0
        assert stats.last_duration_ms == 90_000
        assert stats.outcome_counts == {"victory": 1, "defeat": 1}

    def test_skips_results_that_never_fought(self):
        stats = BattleStats()
        for outcome in (Outcome.DEGRADED, Outcome.RAID_ENDED, Outcome.RAID_FULL):
            assert stats.record(_result(seconds=0, turns=0, outcome=outcome)) is False

        assert stats.battle_count == 0
        assert stats.average_duration_ms == 0
        assert stats.average_turns == 0.0
        assert stats.outcome_counts["raid_full"] == 1

    def test_history_is_bounded(self):
        stats = BattleStats()
        for i in range(HISTORY_LIMIT + 10):
            stats.record(_result(seconds=i + 1, turns=1))

        assert len(stats.durations_ms) == HISTORY_LIMIT
        assert stats.durations_ms[0] == 11_000
        assert stats.battle_count == HISTORY_LIMIT + 10

    def test_goal_and_honor_totals(self):
        stats = BattleStats()
        stats.record(_result(honors=400_000))
        stats.record(_result(honors=1_200_000, outcome=Outcome.GOAL_REACHED, honor_reached=True))

        assert stats.goals_reached == 1
        assert stats.total_honors == 1_200_000

    def test_on_update_callback(self):
        seen = []
        stats = BattleStats(on_update=lambda s: seen.append(s.battle_count))
        stats.record(_result())
        stats.record(_result(outcome=Outcome.DEGRADED))

        assert seen == [1]

    def test_to_dict(self):
        stats = BattleStats()
        stats.record(_result(seconds=30, turns=3))
        d = stats.to_dict()
        assert d["battle_count"] == 1
        assert d["durations_ms"] == [30_000]
        assert d["turns"] == [3]
        assert d["average_turns"] == 3.0
