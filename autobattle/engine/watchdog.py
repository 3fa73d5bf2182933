"""Stall and stuck-UI detection.

The stall window is measured from ``ProgressRecord.last_activity_ms``, which
the hands-off strategy anchors at the moment it clicks the control (not when
the page loaded), and which every network signal pushes forward.
"""

from dataclasses import dataclass


def is_stalled(now_ms: float, last_activity_ms: float, threshold_ms: float) -> bool:
    """True when no activity was seen for longer than ``threshold_ms``."""
    return now_ms - last_activity_ms > threshold_ms


def idle_ms(now_ms: float, last_activity_ms: float) -> float:
    return max(now_ms - last_activity_ms, 0.0)


@dataclass
class UiMissCounter:
    """Counts consecutive ticks on which no in-progress control was visible."""

    threshold: int = 4
    misses: int = 0

    def observe(self, ui_present: bool) -> bool:
        """Record one tick; returns True once the threshold is reached."""
        if ui_present:
            self.misses = 0
            return False
        self.misses += 1
        return self.misses >= self.threshold

    def reset(self) -> None:
        self.misses = 0
