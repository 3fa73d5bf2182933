"""On-demand battle state sampling.

The sampler is the pull side of reconciliation: a best-effort read of the
turn counter and the honor total from the current document. It never
raises. Callers throttle it for periodic goal checks and may call it freely
to confirm terminal state.
"""

import logging
import re
from typing import Iterable, Optional

from .probe import SafeProbe
from .progress import SampledState

logger = logging.getLogger(__name__)

_DIGIT_CLASS = re.compile(r"num-info(\d)")


def parse_turn_digits(indicators: Iterable[str]) -> int:
    """Concatenate ordered single-digit indicators into a turn number.

    Each indicator is an element class string such as ``"num-info1"``;
    indicators without a digit are skipped. No digits means turn 0.
    """
    digits = ""
    for indicator in indicators:
        match = _DIGIT_CLASS.search(indicator or "")
        if match:
            digits += match.group(1)
    return int(digits) if digits else 0


def parse_points(text: Optional[str]) -> Optional[int]:
    """Parse a point total such as ``"1,234,567pt"``; None when absent."""
    if text is None:
        return None
    cleaned = text.replace(",", "").replace("pt", "").strip()
    if not cleaned:
        return 0
    try:
        return int(cleaned)
    except ValueError:
        return 0


class StateSampler:
    """Reads ``SampledState`` through a ``SafeProbe``."""

    def __init__(self, probe: SafeProbe):
        self.probe = probe
        self.samples = 0
        self.last: SampledState = SampledState()

    async def sample(self) -> SampledState:
        self.samples += 1
        state = await self.probe.sample_battle_state()
        self.last = state
        return state


class Throttle:
    """Allows an action at most once per ``interval_ms``."""

    def __init__(self, interval_ms: float):
        self.interval_ms = interval_ms
        self._last_ms: Optional[float] = None

    def ready(self, now_ms: float) -> bool:
        if self._last_ms is None or now_ms - self._last_ms >= self.interval_ms:
            self._last_ms = now_ms
            return True
        return False

    def reset(self) -> None:
        self._last_ms = None
