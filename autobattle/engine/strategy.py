"""Engagement strategies: how the battle control is activated per mode.

``HandsOffStrategy`` clicks the auto control once and lets the game drive
every turn. ``PerTurnStrategy`` presses the attack control once per turn and
reloads to skip the attack animation. Both share the interface
``engage()`` / ``on_reload_resume()`` / ``poll_turn()``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from ..config import BattleConfig
from ..errors import TransientUiTimeout
from ..timing import random_delay_ms
from .probe import Clock, SafeProbe
from .progress import Mode, ProgressRecord

logger = logging.getLogger(__name__)


class EngageOutcome(str, Enum):
    """Result of one engagement attempt."""

    ACTIVATED = "activated"
    LOST = "lost"        # party already wiped, nothing was activated
    ENDED = "ended"      # battle concluded before the control could be used
    MISSING = "missing"  # control absent even after one reload


class EngagementStrategy(ABC):
    """Base class for mode-specific control activation."""

    mode: Mode

    def __init__(
        self,
        probe: SafeProbe,
        config: BattleConfig,
        clock: Clock,
        record: ProgressRecord,
        rng: Optional[random.Random] = None,
    ):
        self.probe = probe
        self.config = config
        self.markers = config.markers
        self.clock = clock
        self.record = record
        self.rng = rng or random.Random()
        self.engagements = 0
        self.reloads = 0

    async def _reload_and_settle(self, settle_ms: Optional[int] = None) -> None:
        self.reloads += 1
        await self.probe.reload()
        await self.clock.sleep_ms(self.config.reload_settle_ms if settle_ms is None else settle_ms)

    async def wipe_visible(self) -> bool:
        return (
            await self.probe.exists(self.markers.cheer_popup, 0, require_visible=True)
            or await self.probe.exists(self.markers.cheer_button, 0, require_visible=True)
        )

    @abstractmethod
    async def engage(self, turn: Optional[int] = None) -> EngageOutcome:
        """Activate the control for the current page."""

    async def on_reload_resume(self) -> EngageOutcome:
        """Re-activate after a recovery reload found the battle still running."""
        return await self.engage()

    async def poll_turn(self, turn: int) -> bool:
        """Act on a waiting player turn; True when an action was taken."""
        return False


class HandsOffStrategy(EngagementStrategy):
    """One activation of the auto control governs all later turns."""

    mode = Mode.HANDS_OFF

    async def engage(self, turn: Optional[int] = None) -> EngageOutcome:
        self.engagements += 1
        return await self._engage(retry=True)

    async def _engage(self, retry: bool) -> EngageOutcome:
        control = self.markers.hands_off_control
        found = await self.probe.exists(control, self.config.control_timeout_ms, require_visible=True)

        if not found:
            outcome = await self._inspect_missing_control()
            if outcome is not None:
                return outcome
            if not retry:
                logger.warning("Auto control still missing after reload")
                return EngageOutcome.MISSING
            logger.warning("%s. Reloading", TransientUiTimeout(control, self.config.control_timeout_ms))
            await self._reload_and_settle()
            return await self._engage(retry=False)

        # Event handlers attach a moment after the control renders.
        await self.clock.sleep_ms(random_delay_ms(150, 250, self.rng))
        if not await self.probe.click(control):
            if not retry:
                return EngageOutcome.MISSING
            logger.warning("Auto control click failed. Reloading")
            await self._reload_and_settle()
            return await self._engage(retry=False)

        self.record.mark_activity(self.clock.now_ms())
        logger.debug("Auto control activated")

        if await self._waiting_for_turn_popup():
            if not retry:
                return EngageOutcome.MISSING
            logger.warning("Previous turn still processing. Reloading")
            await self._reload_and_settle()
            return await self._engage(retry=False)

        return EngageOutcome.ACTIVATED

    async def _inspect_missing_control(self) -> Optional[EngageOutcome]:
        """Classify why the control is missing.

        Returns a final outcome, or None when a reload and retry should follow.
        A confirmation dialog only counts as blocking when the per-turn
        action control is gone; a dialog next to a live battle is left alone.
        """
        if await self.wipe_visible():
            logger.info("Party already wiped. Not activating")
            return EngageOutcome.LOST

        if await self.probe.exists(self.markers.rematch_fail_popup, 0, require_visible=True):
            logger.info("Battle concluded before activation")
            return EngageOutcome.ENDED

        if await self.probe.exists(self.markers.error_popup, 0, require_visible=True):
            if await self.probe.exists(self.markers.attack_control, 0):
                logger.debug("Dialog present alongside a live battle. Ignoring")
                return None
            text = await self.probe.read_text(self.markers.popup_body)
            if self.markers.wipe_header_text.lower() in text.lower():
                logger.info("Party already wiped (blocking dialog)")
                return EngageOutcome.LOST
            logger.info("Dismissing blocking dialog: %s", text.strip() or "<no text>")
            await self.probe.click(self.markers.ok_button)
        return None

    async def _waiting_for_turn_popup(self) -> bool:
        if not await self.probe.exists(self.markers.error_popup, 0, require_visible=True):
            return False
        text = await self.probe.read_text(self.markers.popup_body)
        return self.markers.waiting_for_turn_text.lower() in text.lower()


class PerTurnStrategy(EngagementStrategy):
    """One explicit attack per turn, followed by an animation-skip reload."""

    mode = Mode.PER_TURN

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.last_action_turn = -1

    async def engage(self, turn: Optional[int] = None) -> EngageOutcome:
        self.engagements += 1
        timeout = self.config.control_timeout_ms
        if not await self.probe.exists(self.markers.attack_ready, timeout, require_visible=True):
            logger.warning("%s. Reloading", TransientUiTimeout(self.markers.attack_ready, timeout))
            await self._reload_and_settle(settle_ms=0)
            return EngageOutcome.MISSING
        return await self._act(turn)

    async def poll_turn(self, turn: int) -> bool:
        if self.last_action_turn >= turn:
            return False
        if not await self.probe.exists(self.markers.attack_ready, self.config.per_turn_probe_timeout_ms):
            return False
        await self._act(turn)
        return True

    async def _act(self, turn: Optional[int]) -> EngageOutcome:
        await self.clock.sleep_ms(random_delay_ms(50, 100, self.rng))
        if not await self.probe.click(self.markers.attack_ready):
            logger.warning("Attack click failed. Reloading")
            await self._reload_and_settle(settle_ms=0)
            return EngageOutcome.MISSING

        if turn is not None:
            self.last_action_turn = max(self.last_action_turn, turn)
        self.record.mark_activity(self.clock.now_ms())
        logger.info("Attack pressed (turn %s)", turn if turn is not None else "?")

        if await self.probe.exists(self.markers.rematch_fail_popup, 100):
            logger.info("Battle concluded popup after attack. Reloading")
            await self._reload_and_settle()
            return EngageOutcome.ENDED

        # Both controls going inactive confirms the server accepted the action.
        timeout = self.config.per_turn_confirm_timeout_ms
        confirmed = await asyncio.gather(
            self.probe.exists(self.markers.attack_inactive, timeout),
            self.probe.exists(self.markers.cancel_inactive, timeout),
        )
        if not all(confirmed):
            logger.debug("Action confirmation timed out (turn may have ended)")

        await self.clock.sleep_ms(self.config.per_turn_grace_ms)
        await self._reload_and_settle(settle_ms=0)
        return EngageOutcome.ACTIVATED


def strategy_for(
    mode: Mode,
    probe: SafeProbe,
    config: BattleConfig,
    clock: Clock,
    record: ProgressRecord,
    rng: Optional[random.Random] = None,
) -> EngagementStrategy:
    """Strategy instance for ``mode``."""
    if mode == Mode.HANDS_OFF:
        return HandsOffStrategy(probe, config, clock, record, rng)
    if mode == Mode.PER_TURN:
        return PerTurnStrategy(probe, config, clock, record, rng)
    raise ValueError(f"Unknown battle mode: {mode!r}")
