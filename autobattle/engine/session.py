"""
Battle runner: one encounter end to end.

Opens the listener scope (classifier on the raw source, progress record on
the typed bus), waits for the battle to load, engages, runs the
reconciliation loop, and applies the error policy: only
``BattleLoadFailure`` and ``BattleTimeout`` leave the runner, everything else
becomes a degraded result.
"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..config import BattleConfig
from ..errors import BattleLoadFailure, BattleTimeout, NavigationInterrupted
from ..logs import BattleJournal
from ..timing import format_clock
from .classifier import EventClassifier
from .events import EventBus, EventKind, subscription
from .probe import Clock, DocumentProbe, EventSource, SafeProbe, SystemClock
from .progress import (
    BattleResult,
    HonorProgress,
    Mode,
    Outcome,
    ProgressRecord,
    Session,
)
from .reconcile import ReconciliationLoop
from .recovery import RecoveryCoordinator
from .sampler import StateSampler
from .strategy import EngageOutcome, strategy_for

if TYPE_CHECKING:
    from ..stats import BattleStats

logger = logging.getLogger(__name__)


class BattleRunner:
    """Runs battle sessions against one page.

    ``probe`` and ``source`` are the page collaborators; ``journal`` and
    ``stats`` are optional and owned by the caller.
    """

    def __init__(
        self,
        probe: DocumentProbe,
        source: EventSource,
        config: Optional[BattleConfig] = None,
        clock: Optional[Clock] = None,
        journal: Optional[BattleJournal] = None,
        stats: Optional[BattleStats] = None,
        rng: Optional[random.Random] = None,
    ):
        self.probe = probe if isinstance(probe, SafeProbe) else SafeProbe(probe)
        self.source = source
        self.config = config or BattleConfig()
        self.markers = self.config.markers
        self.clock = clock or SystemClock()
        self.journal = journal
        self.stats = stats
        self.rng = rng

        # Exposed for inspection after a run.
        self.record: Optional[ProgressRecord] = None
        self.loop: Optional[ReconciliationLoop] = None

    def new_session(self, mode: Mode = Mode.HANDS_OFF) -> Session:
        return Session(mode=mode, max_wait_ms=self.config.max_wait_ms)

    async def run(self, session: Session) -> BattleResult:
        """Run one encounter to a ``BattleResult``."""
        cfg = self.config
        session.start_ms = self.clock.now_ms()
        record = ProgressRecord()
        record.mark_activity(session.start_ms)
        self.record = record

        bus = EventBus(f"session-{session.session_id}")
        classifier = EventClassifier(bus, cfg.endpoints)

        def on_event(event: Any) -> None:
            record.apply(event, self.clock.now_ms())
            if self.journal:
                self.journal.signal(event.type, event.url)

        handlers = [(kind.value, on_event) for kind in EventKind]

        try:
            with classifier.attached(self.source), subscription(bus, handlers):
                result = await self._run_session(session, record)
        except NavigationInterrupted as e:
            logger.debug("Battle interrupted by navigation: %s", e)
            result = BattleResult.degraded()
        except BattleLoadFailure as e:
            logger.error("Battle execution failed: %s", e)
            logger.warning("Battle failed to load. Halting for safety")
            session.stop("load_failure")
            if self.journal:
                self.journal.error(str(e), {"url": e.url})
            raise
        except BattleTimeout as e:
            if self.journal:
                self.journal.error(str(e))
            raise
        except Exception as e:
            logger.error("Battle execution failed: %s", e, exc_info=True)
            if self.journal:
                self.journal.error(str(e), {"type": type(e).__name__})
            result = BattleResult.degraded()

        self._summarize(result)
        return result

    async def _run_session(self, session: Session, record: ProgressRecord) -> BattleResult:
        cfg = self.config
        m = self.markers
        probe = self.probe

        url = probe.url()
        if session.track_honors is None:
            session.track_honors = m.is_battle_url(url)
        if self.journal:
            self.journal.session_start(session.mode.value, url)

        honors = HonorProgress(target=cfg.honor_target, current=cfg.initial_honors)
        sampler = StateSampler(probe)
        strategy = strategy_for(session.mode, probe, cfg, self.clock, record, self.rng)
        recovery = RecoveryCoordinator(probe, cfg, session, strategy, self.journal)

        def build_loop(initial_turn: int = 0) -> ReconciliationLoop:
            self.loop = ReconciliationLoop(
                probe, session, record, honors, strategy, recovery, sampler,
                cfg, self.clock, self.journal, initial_turn=initial_turn,
            )
            return self.loop

        if m.is_result_url(url):
            return await build_loop().run()

        if cfg.refresh_on_start:
            logger.info("Refreshing to skip animations")
            await probe.reload()
            await self.clock.sleep_ms(cfg.terminal_settle_ms)
            early = await self._early_end_popup()
            if early is not None:
                return early

        early = await self._wait_for_load(session)
        if early is not None:
            return early
        if m.is_result_url(probe.url()):
            return await build_loop().run()

        initial = await sampler.sample()
        if initial.turn > 0:
            logger.info("Starting at turn %d", initial.turn)
        if session.track_honors and initial.turn > 0:
            honors.update(initial.honors)

        loop = build_loop(initial.turn)
        outcome = await strategy.engage(initial.turn)
        if self.journal:
            self.journal.engage(outcome.value, turn=initial.turn)

        if outcome == EngageOutcome.LOST:
            return loop.finish(max(initial.turn, 1), Outcome.DEFEAT, "lost_before_engage")
        if outcome == EngageOutcome.ENDED:
            return loop.finish(max(initial.turn, 1), Outcome.CONCLUDED, "ended_before_engage")

        return await loop.run()

    async def _wait_for_load(self, session: Session) -> Optional[BattleResult]:
        """Wait for the engagement control.

        Returns an early result when an "already ended" or "full" popup is
        showing instead, and raises ``BattleLoadFailure`` when the page is
        neither a battle nor a result screen.
        """
        cfg = self.config
        m = self.markers
        probe = self.probe
        control = m.attack_control if session.mode == Mode.PER_TURN else m.hands_off_control

        if await probe.exists(control, cfg.load_timeout_ms, require_visible=True):
            return None

        early = await self._early_end_popup()
        if early is not None:
            return early

        url = probe.url()
        if m.is_battle_url(url):
            if await self._dismiss_salute():
                logger.info("Salute popup dismissed. Re-checking for controls")
                await self.clock.sleep_ms(cfg.reload_settle_ms)
                if await probe.exists(control, cfg.load_timeout_ms, require_visible=True):
                    return None

            logger.warning("Control missing for %ds. Reloading", cfg.load_timeout_ms // 1000)
            await probe.reload()
            if not await probe.exists(control, cfg.load_timeout_ms, require_visible=True):
                logger.warning("Control still missing after reload. Relying on recovery")
            return None

        if not m.is_result_url(url):
            raise BattleLoadFailure(url)
        return None

    async def _dismiss_salute(self) -> bool:
        if not await self.probe.exists(self.markers.salute_dismiss, 0, require_visible=True):
            return False
        return await self.probe.click(self.markers.salute_dismiss)

    async def _early_end_popup(self) -> Optional[BattleResult]:
        """Dismiss an "already ended" or "raid is full" popup if one is showing."""
        m = self.markers
        probe = self.probe
        state = None

        if await probe.exists(m.raid_ended_popup, 0, require_visible=True):
            text = (await probe.read_text(m.popup_body)).lower()
            if any(t in text for t in m.ended_texts):
                state = "ended"

        if state is None and await probe.exists(m.ok_button, 0, require_visible=True):
            text = (await probe.read_text(m.popup_body)).lower()
            if any(t in text for t in m.full_texts):
                state = "full"
            elif any(t in text for t in m.ended_texts):
                state = "ended"

        if state is None:
            return None

        logger.info("Raid is %s. Dismissing and skipping", state)
        if not await probe.click(m.raid_ended_ok):
            await probe.click(m.ok_button)
        await self.clock.sleep_ms(self.config.early_popup_settle_ms)
        if self.journal:
            self.journal.terminal(f"raid_{state}", "early_popup", turn=0)
        return BattleResult(
            duration_seconds=0.0,
            turns=0,
            raid_ended=state == "ended",
            raid_full=state == "full",
            outcome=Outcome.RAID_ENDED if state == "ended" else Outcome.RAID_FULL,
        )

    def _summarize(self, result: BattleResult) -> None:
        if result.outcome != Outcome.DEGRADED:
            logger.info(
                "Summary: duration %s (%d turns)",
                format_clock(result.duration_seconds * 1000), result.turns,
            )
            gained = result.honors - self.config.initial_honors
            if gained > 0:
                logger.info("Final honor: %s (+%s)", f"{result.honors:,}", f"{gained:,}")
        if self.stats is not None:
            self.stats.record(result)
        if self.journal:
            self.journal.session_end(
                result.outcome.value, result.duration_seconds, result.turns, result.honors
            )


async def run_battle(
    probe: DocumentProbe,
    source: EventSource,
    mode: Mode = Mode.HANDS_OFF,
    options: Optional[Mapping[str, Any]] = None,
    *,
    session: Optional[Session] = None,
    clock: Optional[Clock] = None,
    journal: Optional[BattleJournal] = None,
    stats: Optional[BattleStats] = None,
) -> BattleResult:
    """Run one battle with caller options such as ``{"honorTarget": 5000}``.

    ``maxBattleMinutes`` bounds the battle even when the caller supplies its
    own ``session``; the session keeps its mode, id and stop flag.
    """
    config = options if isinstance(options, BattleConfig) else BattleConfig.from_options(options)
    runner = BattleRunner(probe, source, config, clock=clock, journal=journal, stats=stats)
    if session is None:
        session = runner.new_session(mode)
    else:
        session.max_wait_ms = config.max_wait_ms
    return await runner.run(session)
