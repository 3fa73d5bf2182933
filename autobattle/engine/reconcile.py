"""
Reconciliation loop.

A cooperative fixed-interval loop that merges the two progress channels
(network events folded into the ``ProgressRecord``, and on-demand samples
from the ``StateSampler``) and drives recovery until the encounter ends.

Checks run in a strict order on every tick:
1. Cancellation
2. Per-turn action (a waiting player turn is never delayed by housekeeping)
3. Terminal network signals (boss died / party wiped)
4. Turn sync from the network
5. Conclusion signal
6. Sampler-based turn/honor update
7. Watchdogs (goal re-check, stall) once the turn has been still for a while
8. Definitive DOM end-state checks
9. Animation-skip reload
10. Stuck-UI detection
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Tuple

from ..config import BattleConfig
from ..errors import BattleTimeout
from ..logs import BattleJournal
from .probe import Clock, SafeProbe
from .progress import (
    BattleResult,
    HonorProgress,
    Mode,
    Outcome,
    ProgressRecord,
    RecoveryContext,
    SampledState,
    Session,
)
from .recovery import RecoveryCoordinator
from .sampler import StateSampler, Throttle
from .strategy import EngagementStrategy
from .watchdog import UiMissCounter, idle_ms, is_stalled

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    LOADING = "loading"
    ENGAGED = "engaged"
    ANIMATION_SKIP = "animation_skip"
    TERMINAL = "terminal"


class ReconciliationLoop:
    """Runs one engaged encounter to a terminal ``BattleResult``.

    Owns the observed turn. ``record`` is written concurrently by the bus
    handlers and only read here, at the top of each tick.
    """

    def __init__(
        self,
        probe: SafeProbe,
        session: Session,
        record: ProgressRecord,
        honors: HonorProgress,
        strategy: EngagementStrategy,
        recovery: RecoveryCoordinator,
        sampler: StateSampler,
        config: BattleConfig,
        clock: Clock,
        journal: Optional[BattleJournal] = None,
        initial_turn: int = 0,
    ):
        self.probe = probe
        self.session = session
        self.record = record
        self.honors = honors
        self.strategy = strategy
        self.recovery = recovery
        self.sampler = sampler
        self.config = config
        self.markers = config.markers
        self.clock = clock
        self.journal = journal

        self.state = LoopState.LOADING
        self.observed_turn = max(initial_turn, 0)
        self.last_turn_change_ms = clock.now_ms()
        self.last_reload_turn = 0
        self.goal_throttle = Throttle(config.goal_check_interval_ms)
        self.end_probe_throttle = Throttle(config.end_probe_interval_ms)
        self.ui_misses = UiMissCounter(config.ui_miss_threshold)
        self.ticks = 0
        self.reloads = 0

    @property
    def track_honors(self) -> bool:
        return bool(self.session.track_honors)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _elapsed_ms(self) -> float:
        return self.clock.now_ms() - self.session.start_ms

    def finish(
        self,
        turns: int,
        outcome: Outcome,
        reason: str,
        honor_reached: bool = False,
        raid_ended: Optional[bool] = None,
        duration_seconds: Optional[float] = None,
    ) -> BattleResult:
        self.state = LoopState.TERMINAL
        if duration_seconds is None:
            duration_seconds = max(self._elapsed_ms(), 0) / 1000
        if self.journal:
            self.journal.terminal(outcome.value, reason, turn=turns)
        return BattleResult(
            duration_seconds=duration_seconds,
            turns=max(turns, 0),
            honors=max(self.honors.current, 0),
            honor_reached=honor_reached,
            raid_ended=raid_ended,
            outcome=outcome,
        )

    async def _reload(self, reason: str, settle_ms: int) -> None:
        self.reloads += 1
        logger.debug("Reloading (%s)", reason)
        if self.journal:
            self.journal.reload(reason, turn=self.observed_turn)
        await self.probe.reload()
        await self.clock.sleep_ms(settle_ms)

    def _adopt_turn(self, turn: int, source: str) -> bool:
        """Move the observed turn forward; it never goes back."""
        if turn <= self.observed_turn:
            return False
        self.observed_turn = turn
        self.last_turn_change_ms = self.clock.now_ms()
        if self.journal:
            self.journal.turn_change(turn, source)
        return True

    def _update_honors(self, state: SampledState) -> None:
        delta = self.honors.update(state.honors)
        if delta is None:
            logger.info("Turn %d", self.observed_turn)
            return
        logger.info(
            "Turn %d: %s honor (%s)",
            self.observed_turn, f"{self.honors.current:,}", f"{delta:+,}",
        )
        if self.journal:
            self.journal.honor_update(self.honors.current, delta, turn=self.observed_turn)

    def _goal_result(self, via: str) -> Optional[BattleResult]:
        if not self.honors.goal_reached():
            return None
        logger.info(
            "Honor goal reached %s: %s / %s",
            via, f"{self.honors.current:,}", f"{self.honors.target:,}",
        )
        return self.finish(
            max(self.observed_turn, 1), Outcome.GOAL_REACHED, f"goal_{via}", honor_reached=True
        )

    async def _resample(self) -> Optional[BattleResult]:
        """Unthrottled sample after a reload; a goal result if it was reached."""
        state = await self.sampler.sample()
        self._adopt_turn(state.turn, "sampler")
        if self.track_honors:
            self._update_honors(state)
            return self._goal_result("after reload")
        return None

    def _recovery_context(self) -> RecoveryContext:
        return RecoveryContext.from_record(self.session.mode, self.record, self.observed_turn)

    def _terminal_outcome(self) -> Outcome:
        return self.record.first_terminal or Outcome.CONCLUDED

    async def _wipe_visible(self) -> bool:
        m = self.markers
        if await self.probe.exists(m.cheer_popup, 0, require_visible=True):
            return True
        if await self.probe.exists(m.cheer_button, 0, require_visible=True):
            return True
        if await self.probe.exists(m.popup_header, 0, require_visible=True):
            header = await self.probe.read_text(m.popup_header)
            return m.wipe_header_text.lower() in header.lower()
        return False

    # ------------------------------------------------------------------
    # Tick phases
    # ------------------------------------------------------------------

    async def _check_end_markers(self) -> Optional[BattleResult]:
        """Batched secondary end markers, each with its own recovery action."""
        m = self.markers
        turns = max(self.observed_turn, 1)

        if await self.probe.exists(m.empty_result, 0):
            logger.info("Battle concluded (empty result)")
            return self.finish(turns, self._terminal_outcome(), "empty_result")

        if await self.probe.exists(m.rematch_fail, 0, require_visible=True):
            logger.info("Battle concluded (rematch unavailable)")
            await self._reload("rematch_fail", self.config.terminal_settle_ms)
            return self.finish(turns, self._terminal_outcome(), "rematch_fail")

        if await self._wipe_visible():
            # The network lose signal may report the same wipe.
            logger.info("Party wiped (detected on page)")
            await self._reload("wipe", self.config.terminal_settle_ms)
            return self.finish(turns, Outcome.DEFEAT, "wipe_popup")

        if await self.probe.exists(m.raid_ended_popup, 0, require_visible=True):
            logger.info("Raid already ended. Dismissing popup")
            await self.probe.click(m.raid_ended_ok)
            await self.clock.sleep_ms(self.config.dismiss_settle_ms)
            return self.finish(
                0, Outcome.RAID_ENDED, "raid_ended", raid_ended=True, duration_seconds=0.0
            )

        return None

    async def _animation_skip(self) -> Tuple[bool, Optional[BattleResult]]:
        """Reload once per turn after an attack result.

        Returns whether a skip happened, and the terminal result when the
        resample or recovery after it ended the encounter.
        """
        if self.session.mode != Mode.HANDS_OFF:
            return False, None
        if not self.record.consume_attack_result():
            return False, None
        if self.last_reload_turn >= self.observed_turn:
            return False, None

        self.last_reload_turn = self.observed_turn
        self.state = LoopState.ANIMATION_SKIP
        logger.debug("Skipping attack animation (turn %d)", self.observed_turn)
        await self._reload("animation_skip", self.config.reload_settle_ms)

        goal = await self._resample()
        if goal is not None:
            return True, goal
        if await self.recovery.check_and_resume(self._recovery_context()):
            return True, self.finish(max(self.observed_turn, 1), self._terminal_outcome(), "recovery")
        self.state = LoopState.ENGAGED
        return True, None

    async def _check_stuck_ui(self) -> Optional[BattleResult]:
        present = await self.probe.exists(self.markers.in_progress, self.config.ui_probe_timeout_ms)
        if not self.ui_misses.observe(present):
            return None

        logger.warning("UI missing (stuck). Reloading")
        if self.journal:
            self.journal.ui_stuck(self.ui_misses.misses, turn=self.observed_turn)
        self.ui_misses.reset()
        await self._reload("ui_stuck", self.config.reload_settle_ms)

        goal = await self._resample()
        if goal is not None:
            return goal
        if await self.recovery.check_and_resume(self._recovery_context()):
            return self.finish(max(self.observed_turn, 1), self._terminal_outcome(), "recovery")
        self.last_turn_change_ms = self.clock.now_ms()
        return None

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> BattleResult:
        """Tick until a terminal result; raises ``BattleTimeout`` at ``max_wait_ms``."""
        self.state = LoopState.ENGAGED
        cfg = self.config
        record = self.record

        while self._elapsed_ms() < self.session.max_wait_ms:
            self.ticks += 1

            # 1. Cancellation
            if self.session.stopped:
                logger.info("Wait cancelled (%s)", self.session.stop_reason)
                return self.finish(self.observed_turn, Outcome.ABORTED, "stopped")

            url = self.probe.url()

            # 2. Per-turn action
            if (
                self.session.mode == Mode.PER_TURN
                and not (record.terminal or record.battle_concluded)
                and not self.markers.is_result_url(url)
                and await self.strategy.poll_turn(self.observed_turn)
            ):
                continue

            # 3. Terminal network signals
            if record.terminal:
                outcome = self._terminal_outcome()
                logger.info("Battle ended by network signal (%s)", outcome.value)
                await self._reload("terminal", cfg.terminal_settle_ms)
                return self.finish(max(self.observed_turn, 1), outcome, "network_terminal")

            # 4. Turn sync from network
            synced = False
            if record.network_turn > self.observed_turn:
                self._adopt_turn(record.network_turn, "network")
                synced = True
                if self.track_honors:
                    self._update_honors(await self.sampler.sample())
                    goal = self._goal_result("on turn sync")
                    if goal is not None:
                        return goal
                else:
                    logger.info("Turn %d", self.observed_turn)

            # 5. Conclusion signal
            if record.battle_concluded:
                logger.info("Battle end detected by network")
                await self.clock.sleep_ms(cfg.conclusion_settle_ms)
                return self.finish(
                    max(self.observed_turn + 1, 1), self._terminal_outcome(), "network_conclusion"
                )

            # 6. Sampler fallback
            if not synced:
                state = await self.sampler.sample()
                if self._adopt_turn(state.turn, "sampler") and self.track_honors:
                    self._update_honors(state)
                    goal = self._goal_result("on turn change")
                    if goal is not None:
                        return goal

            # 7. Watchdogs
            now = self.clock.now_ms()
            if now - self.last_turn_change_ms > cfg.watchdog_grace_ms:
                if self.track_honors and self.honors.target > 0 and self.goal_throttle.ready(now):
                    state = await self.sampler.sample()
                    if state.honors is not None and state.honors > self.honors.current:
                        self._update_honors(state)
                    goal = self._goal_result("periodically")
                    if goal is not None:
                        return goal

                if (
                    self.session.mode == Mode.HANDS_OFF
                    and not self.session.stopped
                    and not self.markers.is_result_url(url)
                    and is_stalled(now, record.last_activity_ms, cfg.stall_threshold_ms)
                ):
                    idle = idle_ms(now, record.last_activity_ms)
                    logger.warning("No battle activity for %ds. Reloading", round(idle / 1000))
                    if self.journal:
                        self.journal.watchdog_stall(idle, turn=self.observed_turn)
                    await self._reload("stall", cfg.reload_settle_ms)
                    record.mark_activity(self.clock.now_ms())
                    outcome = await self.strategy.engage(self.observed_turn)
                    if self.journal:
                        self.journal.engage(outcome.value, turn=self.observed_turn)
                    continue

            # 8. Definitive end state
            if self.markers.is_result_url(url):
                logger.info("Result screen reached")
                return self.finish(max(self.observed_turn, 1), self._terminal_outcome(), "result_url")

            if self.end_probe_throttle.ready(self.clock.now_ms()):
                result = await self._check_end_markers()
                if result is not None:
                    return result

            # 9. Animation skip
            skipped, result = await self._animation_skip()
            if result is not None:
                return result
            if skipped:
                continue

            # 10. Stuck UI
            result = await self._check_stuck_ui()
            if result is not None:
                return result

            await self.clock.sleep_ms(cfg.tick_interval_ms)

        elapsed = self._elapsed_ms()
        logger.warning("Battle timeout after %ds", round(elapsed / 1000))
        if self.journal:
            self.journal.terminal("timeout", "max_wait", turn=self.observed_turn)
        raise BattleTimeout(elapsed, self.session.max_wait_ms, turns=self.observed_turn)
