"""Post-reload classification: resume the battle or report it over."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import BattleConfig
from ..errors import SessionInvalidated
from ..logs import BattleJournal
from .probe import SafeProbe
from .progress import RecoveryContext, Session
from .strategy import EngageOutcome, EngagementStrategy

logger = logging.getLogger(__name__)


class RecoveryCoordinator:
    """Decides, after a reload, whether the encounter is still running.

    ``check_and_resume`` returns True when the encounter is over. Being
    redirected to a landing or login surface means the whole automation
    session is invalid: the session is stopped with
    ``stop_reason="session_invalidated"`` so the outer run loop ends too.
    """

    def __init__(
        self,
        probe: SafeProbe,
        config: BattleConfig,
        session: Session,
        strategy: EngagementStrategy,
        journal: Optional[BattleJournal] = None,
    ):
        self.probe = probe
        self.config = config
        self.markers = config.markers
        self.session = session
        self.strategy = strategy
        self.journal = journal
        self.checks = 0
        self.resumes = 0

    def _record(self, over: bool, reason: str, turn: int) -> bool:
        if self.journal:
            self.journal.recovery(over, reason, turn=turn)
        return over

    async def check_and_resume(self, ctx: RecoveryContext) -> bool:
        self.checks += 1
        m = self.markers
        url = self.probe.url()

        if m.is_landing_url(url) or await self.probe.exists(m.login, 0):
            error = SessionInvalidated(url)
            logger.error("%s. Stopping", error)
            self.session.stop("session_invalidated")
            if self.journal:
                self.journal.error(str(error), {"url": url})
            return self._record(True, "session_invalidated", ctx.observed_turn)

        if m.is_result_url(url):
            return self._record(True, "result_screen", ctx.observed_turn)

        if await self.probe.exists(m.ok_button, 0) or await self.probe.exists(m.empty_result, 0):
            logger.info("Combat concluded")
            return self._record(True, "finished", ctx.observed_turn)

        for marker in (m.cheer_popup, m.cheer_button, m.rematch_fail_popup, m.elixir_popup):
            if await self.probe.exists(marker, 0, require_visible=True):
                logger.info("Party wiped")
                return self._record(True, "wiped", ctx.observed_turn)

        if ctx.terminal:
            return self._record(True, "terminal_signal", ctx.observed_turn)

        if await self.probe.exists(m.attack_control, 200) and not self.session.stopped:
            # Re-activating against a dead party only triggers another reload.
            if await self.strategy.wipe_visible():
                logger.info("Party wiped (checked before re-engaging)")
                return self._record(True, "wiped", ctx.observed_turn)

            self.resumes += 1
            outcome = await self.strategy.on_reload_resume()
            if self.journal:
                self.journal.engage(outcome.value, turn=ctx.observed_turn)
            if outcome in (EngageOutcome.LOST, EngageOutcome.ENDED):
                return self._record(True, outcome.value, ctx.observed_turn)
            return self._record(False, "resumed", ctx.observed_turn)

        if m.is_result_url(self.probe.url()):
            return self._record(True, "result_screen", ctx.observed_turn)

        return self._record(False, "unknown", ctx.observed_turn)
