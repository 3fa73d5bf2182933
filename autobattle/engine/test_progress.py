"""Tests for session-scoped progress state."""

import pytest
from pydantic import ValidationError

from autobattle.engine.events import (
    AttackResolved,
    BattleConcluded,
    BossDied,
    JoinError,
    PartyWiped,
    SummonUsed,
    TurnAdvanced,
)
from autobattle.engine.progress import (
    BattleResult,
    HonorProgress,
    Mode,
    Outcome,
    ProgressRecord,
    RecoveryContext,
    SampledState,
    Session,
)


class TestProgressRecord:
    """Folding domain events into the record."""

    def test_network_turn_never_decreases(self):
        record = ProgressRecord()
        record.apply(TurnAdvanced(turn=4), 100)
        record.apply(TurnAdvanced(turn=2), 200)
        record.apply(SummonUsed(turn=None), 300)
        assert record.network_turn == 4
        assert record.last_activity_ms == 300
        assert record.signals == 3

    def test_attack_result_flag_consumed_once(self):
        record = ProgressRecord()
        record.apply(AttackResolved(turn=3), 0)
        assert record.network_turn == 3
        assert record.consume_attack_result() is True
        assert record.consume_attack_result() is False

    def test_first_terminal_sticks(self):
        record = ProgressRecord()
        record.apply(PartyWiped(), 0)
        record.apply(BossDied(), 0)
        assert record.terminal is True
        assert record.party_wiped and record.boss_died
        assert record.first_terminal == Outcome.DEFEAT

    def test_apply_is_idempotent(self):
        record = ProgressRecord()
        for _ in range(3):
            record.apply(BossDied(), 10)
            record.apply(BattleConcluded(), 10)
        assert record.boss_died is True
        assert record.battle_concluded is True
        assert record.first_terminal == Outcome.VICTORY

    def test_activity_never_moves_back(self):
        record = ProgressRecord()
        record.mark_activity(500)
        record.mark_activity(100)
        assert record.last_activity_ms == 500

    def test_join_error_recorded(self):
        record = ProgressRecord()
        record.apply(JoinError(kind="full"), 0)
        assert record.join_error == "full"
        assert record.terminal is False


class TestHonorProgress:
    def test_goal_fires_at_most_once(self):
        honors = HonorProgress(target=1000)
        honors.update(999)
        assert honors.goal_reached() is False
        honors.update(1000)
        assert honors.goal_reached() is True
        honors.update(5000)
        assert honors.goal_reached() is False
        assert honors.fired is True

    def test_no_target_never_fires(self):
        honors = HonorProgress()
        honors.update(10_000_000)
        assert honors.goal_reached() is False

    def test_update_returns_gain(self):
        honors = HonorProgress(current=1000)
        assert honors.update(1500) == 500
        assert honors.previous == 1000
        assert honors.update(None) is None
        assert honors.current == 1500

    def test_zero_reading_before_any_honor(self):
        honors = HonorProgress()
        assert honors.update(0) is None
        assert honors.current == 0

    def test_blank_reading_keeps_total(self):
        honors = HonorProgress(current=5000)
        assert honors.update(0) is None
        assert honors.current == 5000
        assert honors.update(4200) is None
        assert honors.current == 5000
        assert honors.update(6000) == 1000


class TestSampledState:
    def test_coerce(self):
        assert SampledState.coerce({"turn": "7", "honors": "1200"}) == SampledState(7, 1200)
        assert SampledState.coerce({"turn": None}) == SampledState(0, None)
        assert SampledState.coerce({"turn": -3, "honors": "n/a"}) == SampledState(0, None)
        state = SampledState(2, 10)
        assert SampledState.coerce(state) is state


class TestSession:
    def test_first_stop_reason_wins(self):
        session = Session(mode=Mode.PER_TURN)
        session.stop("session_invalidated")
        session.stop("stop_requested")
        assert session.stopped is True
        assert session.invalidated is True

    def test_unique_ids(self):
        assert Session().session_id != Session().session_id


class TestBattleResult:
    def test_aliases(self):
        result = BattleResult(durationSeconds=12.5, turns=3, honorReached=True, raidEnded=False)
        data = result.model_dump(by_alias=True)
        assert data["durationSeconds"] == 12.5
        assert data["honorReached"] is True
        assert data["raidEnded"] is False
        assert data["raidFull"] is None

    def test_non_negative(self):
        with pytest.raises(ValidationError):
            BattleResult(turns=-1)

    def test_degraded(self):
        result = BattleResult.degraded()
        assert result.outcome == Outcome.DEGRADED
        assert (result.duration_seconds, result.turns, result.honors) == (0.0, 0, 0)


class TestRecoveryContext:
    def test_from_record(self):
        record = ProgressRecord(battle_concluded=True)
        ctx = RecoveryContext.from_record(Mode.HANDS_OFF, record, 6)
        assert ctx.observed_turn == 6
        assert ctx.terminal is True
        assert RecoveryContext(mode=Mode.HANDS_OFF).terminal is False
