"""Session-scoped progress state shared by the classifier and the loop.

Everything here lives for exactly one encounter. ``ProgressRecord`` is
written by bus handlers and read at the top of each loop tick; it is not
locked because handlers and the loop only interleave at awaits.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .events import (
    AbilityUsed,
    AttackResolved,
    BattleConcluded,
    BossDied,
    JoinError,
    PartyWiped,
    SummonUsed,
    TurnAdvanced,
)


class Mode(str, Enum):
    """Engagement style of a session."""

    HANDS_OFF = "hands_off"  # one activation drives every turn
    PER_TURN = "per_turn"    # one explicit action per turn


class Outcome(str, Enum):
    """How a session ended."""

    VICTORY = "victory"
    DEFEAT = "defeat"
    CONCLUDED = "concluded"  # result screen or conclusion signal, winner unknown
    GOAL_REACHED = "goal_reached"
    RAID_ENDED = "raid_ended"
    RAID_FULL = "raid_full"
    ABORTED = "aborted"
    DEGRADED = "degraded"


@dataclass
class Session:
    """One combat encounter attempt, owned by the caller."""

    mode: Mode = Mode.HANDS_OFF
    max_wait_ms: float = 15 * 60 * 1000
    start_ms: float = 0.0
    track_honors: Optional[bool] = None  # None: infer from the battle URL
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    stopped: bool = False
    stop_reason: Optional[str] = None

    def stop(self, reason: str = "stop_requested") -> None:
        """Request cooperative cancellation; the first reason wins."""
        if not self.stopped:
            self.stopped = True
            self.stop_reason = reason

    @property
    def invalidated(self) -> bool:
        return self.stop_reason == "session_invalidated"


@dataclass(frozen=True)
class SampledState:
    """Snapshot from one on-demand probe. ``honors`` is None when unsupported."""

    turn: int = 0
    honors: Optional[int] = None

    @classmethod
    def coerce(cls, value: Any) -> "SampledState":
        """Normalize whatever a probe returned into a ``SampledState``."""
        if isinstance(value, SampledState):
            return value
        if isinstance(value, dict):
            turn = value.get("turn") or 0
            honors = value.get("honors")
        else:
            turn = getattr(value, "turn", 0) or 0
            honors = getattr(value, "honors", None)
        try:
            turn = max(int(turn), 0)
        except (TypeError, ValueError):
            turn = 0
        try:
            honors = int(honors) if honors is not None else None
        except (TypeError, ValueError):
            honors = None
        return cls(turn=turn, honors=honors)


@dataclass
class ProgressRecord:
    """Reconciled progress of one session.

    ``boss_died``, ``party_wiped`` and ``battle_concluded`` only ever go from
    False to True. ``network_turn`` never decreases. ``first_terminal``
    remembers which of boss death and party wipe was seen first.
    """

    network_turn: int = 0
    boss_died: bool = False
    party_wiped: bool = False
    battle_concluded: bool = False
    attack_result_received: bool = False
    last_activity_ms: float = 0.0
    first_terminal: Optional[Outcome] = None
    join_error: Optional[str] = None
    signals: int = 0

    def mark_activity(self, now_ms: float) -> None:
        self.last_activity_ms = max(self.last_activity_ms, now_ms)

    def advance_turn(self, turn: Optional[int]) -> bool:
        if turn is not None and turn > self.network_turn:
            self.network_turn = turn
            return True
        return False

    def consume_attack_result(self) -> bool:
        """Return and clear the attack-result flag."""
        received = self.attack_result_received
        self.attack_result_received = False
        return received

    @property
    def terminal(self) -> bool:
        return self.boss_died or self.party_wiped

    def apply(self, event: Any, now_ms: float) -> None:
        """Fold one domain event into the record. Idempotent."""
        self.signals += 1
        self.mark_activity(now_ms)

        if isinstance(event, TurnAdvanced):
            self.advance_turn(event.turn)
        elif isinstance(event, AttackResolved):
            self.attack_result_received = True
            self.advance_turn(event.turn)
        elif isinstance(event, (AbilityUsed, SummonUsed)):
            self.advance_turn(event.turn)
        elif isinstance(event, BossDied):
            self.boss_died = True
            if self.first_terminal is None:
                self.first_terminal = Outcome.VICTORY
        elif isinstance(event, PartyWiped):
            self.party_wiped = True
            if self.first_terminal is None:
                self.first_terminal = Outcome.DEFEAT
        elif isinstance(event, BattleConcluded):
            self.battle_concluded = True
        elif isinstance(event, JoinError):
            self.join_error = event.kind


@dataclass
class HonorProgress:
    """Cumulative honor tracking with a goal that fires at most once."""

    target: int = 0
    current: int = 0
    previous: int = 0
    _fired: bool = field(default=False, init=False, repr=False)

    def update(self, honors: Optional[int]) -> Optional[int]:
        """Record a new total; returns the gain, or None when nothing is known.

        Honor only accumulates, so a blank or lower reading (a half-rendered
        page after a reload) leaves the running total alone.
        """
        if honors is None or honors <= 0:
            return None
        if honors < self.current:
            return None
        self.previous = self.current
        self.current = honors
        return self.current - self.previous

    def goal_reached(self) -> bool:
        """True exactly once: the first call where ``current >= target > 0``."""
        if self._fired or self.target <= 0:
            return False
        if self.current >= self.target:
            self._fired = True
            return True
        return False

    @property
    def fired(self) -> bool:
        return self._fired


class BattleResult(BaseModel):
    """Immutable outcome of one session."""

    model_config = {"frozen": True, "populate_by_name": True}

    duration_seconds: float = Field(0.0, alias="durationSeconds", ge=0)
    turns: int = Field(0, ge=0)
    honors: int = Field(0, ge=0)
    honor_reached: bool = Field(False, alias="honorReached")
    raid_ended: Optional[bool] = Field(None, alias="raidEnded")
    raid_full: Optional[bool] = Field(None, alias="raidFull")
    outcome: Outcome = Outcome.CONCLUDED

    @classmethod
    def degraded(cls) -> "BattleResult":
        return cls(duration_seconds=0.0, turns=0, honors=0, outcome=Outcome.DEGRADED)


@dataclass(frozen=True)
class RecoveryContext:
    """What recovery needs to decide whether re-engaging makes sense."""

    mode: Mode
    observed_turn: int = 0
    boss_died: bool = False
    party_wiped: bool = False
    battle_concluded: bool = False

    @classmethod
    def from_record(cls, mode: Mode, record: ProgressRecord, observed_turn: int) -> "RecoveryContext":
        return cls(
            mode=mode,
            observed_turn=observed_turn,
            boss_died=record.boss_died,
            party_wiped=record.party_wiped,
            battle_concluded=record.battle_concluded,
        )

    @property
    def terminal(self) -> bool:
        return self.boss_died or self.party_wiped or self.battle_concluded
