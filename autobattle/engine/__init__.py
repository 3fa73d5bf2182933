"""Battle engine: event classification, reconciliation loop, watchdogs and recovery."""

from .events import (
    RAW_MESSAGE,
    EventBus,
    EventKind,
    RawMessage,
    DomainEvent,
    TurnAdvanced,
    AttackResolved,
    AbilityUsed,
    SummonUsed,
    BossDied,
    PartyWiped,
    BattleConcluded,
    JoinError,
    subscription,
)
from .progress import (
    Mode,
    Outcome,
    Session,
    SampledState,
    ProgressRecord,
    HonorProgress,
    BattleResult,
    RecoveryContext,
)
from .probe import (
    DocumentProbe,
    EventSource,
    Clock,
    SystemClock,
    SafeProbe,
)
from .classifier import EventClassifier, scan_scenario, join_error_kind
from .sampler import StateSampler, Throttle, parse_turn_digits, parse_points
from .watchdog import UiMissCounter, is_stalled, idle_ms
from .strategy import (
    EngageOutcome,
    EngagementStrategy,
    HandsOffStrategy,
    PerTurnStrategy,
    strategy_for,
)
from .recovery import RecoveryCoordinator
from .reconcile import LoopState, ReconciliationLoop
from .session import BattleRunner, run_battle

__all__ = [
    # Events
    "RAW_MESSAGE",
    "EventBus",
    "EventKind",
    "RawMessage",
    "DomainEvent",
    "TurnAdvanced",
    "AttackResolved",
    "AbilityUsed",
    "SummonUsed",
    "BossDied",
    "PartyWiped",
    "BattleConcluded",
    "JoinError",
    "subscription",
    # Progress
    "Mode",
    "Outcome",
    "Session",
    "SampledState",
    "ProgressRecord",
    "HonorProgress",
    "BattleResult",
    "RecoveryContext",
    # Collaborators
    "DocumentProbe",
    "EventSource",
    "Clock",
    "SystemClock",
    "SafeProbe",
    # Components
    "EventClassifier",
    "scan_scenario",
    "join_error_kind",
    "StateSampler",
    "Throttle",
    "parse_turn_digits",
    "parse_points",
    "UiMissCounter",
    "is_stalled",
    "idle_ms",
    "EngageOutcome",
    "EngagementStrategy",
    "HandsOffStrategy",
    "PerTurnStrategy",
    "strategy_for",
    "RecoveryCoordinator",
    "LoopState",
    "ReconciliationLoop",
    "BattleRunner",
    "run_battle",
]
