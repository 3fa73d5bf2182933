"""
autobattle

Battle progress reconciliation and recovery for browser game automation.
Merges intercepted network signals with on-demand page sampling and drives
reloads, re-engagement and popup dismissal until a battle has a definitive
outcome.
"""

# Configuration
from .config import BattleConfig, Markers, Endpoints

# Errors
from .errors import (
    AutobattleError,
    TransientUiTimeout,
    NavigationInterrupted,
    ProbeReadFailure,
    SessionInvalidated,
    BattleLoadFailure,
    BattleTimeout,
)

# Engine
from .engine import (
    Mode,
    Outcome,
    Session,
    BattleResult,
    SampledState,
    DocumentProbe,
    EventSource,
    Clock,
    SystemClock,
    SafeProbe,
    EventBus,
    RawMessage,
    EventClassifier,
    BattleRunner,
    run_battle,
)

# Journal and stats
from .logs import BattleJournal, create_journal
from .stats import BattleStats

__version__ = "0.1.0"

__all__ = [
    "BattleConfig",
    "Markers",
    "Endpoints",
    "AutobattleError",
    "TransientUiTimeout",
    "NavigationInterrupted",
    "ProbeReadFailure",
    "SessionInvalidated",
    "BattleLoadFailure",
    "BattleTimeout",
    "Mode",
    "Outcome",
    "Session",
    "BattleResult",
    "SampledState",
    "DocumentProbe",
    "EventSource",
    "Clock",
    "SystemClock",
    "SafeProbe",
    "EventBus",
    "RawMessage",
    "EventClassifier",
    "BattleRunner",
    "run_battle",
    "BattleJournal",
    "create_journal",
    "BattleStats",
]
