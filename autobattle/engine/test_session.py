"""Tests for the battle runner: load path, error policy and bookkeeping."""

import json

import pytest

from autobattle.e2e.harness import (
    BattleHarness,
    FakeClock,
    FakeDocument,
    boss_died_message,
    turn_start_message,
)
from autobattle.engine.events import RAW_MESSAGE, EventBus
from autobattle.engine.progress import Mode, Outcome, Session
from autobattle.engine.session import BattleRunner, run_battle
from autobattle.errors import BattleTimeout, NavigationInterrupted
from autobattle.logs import BattleJournal
from autobattle.stats import BattleStats


class BrokenSource(EventBus):
    """Raw source that refuses listeners."""

    def __init__(self, error):
        super().__init__("broken")
        self.error = error

    def on(self, event_type, handler):
        raise self.error


def _win_on_click(harness):
    harness.document.on_click[harness.markers.hands_off_control] = lambda: harness.emit(
        turn_start_message(1), boss_died_message()
    )


@pytest.mark.asyncio
class TestErrorPolicy:
    """Only load failures and timeouts leave the runner."""

    async def test_unexpected_error_degrades(self, harness):
        runner = BattleRunner(harness.document, BrokenSource(RuntimeError("listener")), clock=harness.clock)

        result = await runner.run(harness.session)

        assert result.outcome == Outcome.DEGRADED
        assert result.turns == 0
        assert result.duration_seconds == 0

    async def test_navigation_degrades(self, harness):
        source = BrokenSource(NavigationInterrupted("frame detached"))
        runner = BattleRunner(harness.document, source, clock=harness.clock)

        result = await runner.run(harness.session)

        assert result.outcome == Outcome.DEGRADED
        assert harness.session.stopped is False

    async def test_timeout_propagates_and_cleans_up(self):
        harness = BattleHarness(options={"maxBattleMinutes": 0.05})
        harness.emit_at(1000, turn_start_message(2))

        with pytest.raises(BattleTimeout) as exc_info:
            await harness.run()

        assert exc_info.value.turns == 2
        assert harness.source.listener_count() == 0

    async def test_listeners_removed_after_run(self, harness):
        _win_on_click(harness)

        await harness.run()

        assert harness.source.listener_count() == 0


@pytest.mark.asyncio
class TestLoadPath:
    async def test_wiped_before_engagement(self):
        harness = BattleHarness(present=set())
        harness.document.show(harness.markers.cheer_popup)

        result = await harness.run()

        assert result.outcome == Outcome.DEFEAT
        assert result.turns == 1
        # one reload while waiting for the control, none while engaging
        assert harness.reloads == 1
        assert harness.document.clicks == []

    async def test_starting_mid_battle(self):
        harness = BattleHarness()
        harness.document.set_state(turn=3, honors=250_000)
        harness.stop_at(1000)

        result = await harness.run()

        assert result.turns == 3
        assert result.honors == 250_000
        assert harness.runner.loop.observed_turn == 3

    async def test_explicit_honor_tracking_off(self):
        harness = BattleHarness(options={"honorTarget": 100})
        harness.session.track_honors = False
        harness.document.set_state(turn=2, honors=5000)
        harness.stop_at(5000)

        result = await harness.run()

        assert result.outcome == Outcome.ABORTED
        assert result.honors == 0

    async def test_initial_honors_from_options(self):
        harness = BattleHarness(options={"initialHonors": 40_000, "honorTarget": 50_000})
        harness.stop_at(1000)

        result = await harness.run()

        assert result.honors == 40_000
        assert result.honor_reached is False


@pytest.mark.asyncio
class TestBookkeeping:
    async def test_stats_recorded(self):
        harness = BattleHarness()
        stats = BattleStats()
        harness.runner.stats = stats
        _win_on_click(harness)

        await harness.run()

        assert stats.battle_count == 1
        assert stats.outcome_counts == {"victory": 1}

    async def test_journal_written(self, tmp_path):
        harness = BattleHarness()
        journal = BattleJournal(harness.session.session_id, base_dir=str(tmp_path))
        harness.runner.journal = journal
        _win_on_click(harness)

        await harness.run()
        journal.close()

        types = [json.loads(line)["type"] for line in journal.path.read_text().strip().split("\n")]
        assert types[0] == "session.start"
        assert "engage" in types
        assert types.count("signal") == 2
        assert "reload" in types
        assert types[-2:] == ["terminal", "session.end"]
        assert journal.get_summary().outcome == "victory"


@pytest.mark.asyncio
class TestRunBattle:
    async def test_plain_options(self):
        clock = FakeClock()
        document = FakeDocument(present=[".btn-auto", ".btn-attack-start"], clock=clock)
        source = EventBus("raw")
        session = Session(mode=Mode.HANDS_OFF, max_wait_ms=60_000)

        async def win():
            await source.emit(RAW_MESSAGE, boss_died_message())

        document.on_click[".btn-auto"] = win

        result = await run_battle(
            document, source, options={"maxBattleMinutes": 1}, session=session, clock=clock
        )

        assert result.outcome == Outcome.VICTORY
        assert document.reloads == 1

    async def test_battle_budget_applies_to_caller_session(self):
        harness = BattleHarness()
        session = Session(mode=Mode.HANDS_OFF)

        with pytest.raises(BattleTimeout):
            await run_battle(
                harness.document, harness.source, options={"maxBattleMinutes": 0.05},
                session=session, clock=harness.clock,
            )

        assert session.max_wait_ms == pytest.approx(3000)
