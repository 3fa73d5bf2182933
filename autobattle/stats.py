"""
Rolling battle statistics for one automation run.

Keeps the most recent durations and turn counts (bounded history) plus
running totals, and notifies an optional callback after every battle.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional

from .engine.progress import BattleResult, Outcome

HISTORY_LIMIT = 50

# Outcomes that never reached combat do not count as battles.
_UNCOUNTED = {Outcome.DEGRADED, Outcome.RAID_ENDED, Outcome.RAID_FULL}


@dataclass
class BattleStats:
    """Per-run battle statistics."""
    battle_count: int = 0
    total_turns: int = 0
    total_honors: int = 0
    goals_reached: int = 0
    outcome_counts: Dict[str, int] = field(default_factory=dict)
    durations_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))
    turns: Deque[int] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))
    on_update: Optional[Callable[["BattleStats"], Any]] = None

    def record(self, result: BattleResult) -> bool:
        """Fold one result in; returns False for results that are not battles."""
        self.outcome_counts[result.outcome.value] = self.outcome_counts.get(result.outcome.value, 0) + 1
        if result.outcome in _UNCOUNTED:
            return False

        self.battle_count += 1
        self.total_turns += result.turns
        self.total_honors = max(self.total_honors, result.honors)
        if result.honor_reached:
            self.goals_reached += 1

        if result.duration_seconds > 0:
            self.durations_ms.append(result.duration_seconds * 1000)
            self.turns.append(result.turns)

        if self.on_update is not None:
            self.on_update(self)
        return True

    @property
    def average_duration_ms(self) -> int:
        if not self.durations_ms:
            return 0
        return round(sum(self.durations_ms) / len(self.durations_ms))

    @property
    def average_turns(self) -> float:
        """Average over all battles of the run, not just the retained history."""
        if self.battle_count == 0:
            return 0.0
        return round(self.total_turns / self.battle_count, 1)

    @property
    def last_duration_ms(self) -> float:
        return self.durations_ms[-1] if self.durations_ms else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "battle_count": self.battle_count,
            "total_turns": self.total_turns,
            "total_honors": self.total_honors,
            "goals_reached": self.goals_reached,
            "outcome_counts": dict(self.outcome_counts),
            "average_duration_ms": self.average_duration_ms,
            "average_turns": self.average_turns,
            "durations_ms": list(self.durations_ms),
            "turns": list(self.turns),
            "last_duration_ms": self.last_duration_ms,
        }
