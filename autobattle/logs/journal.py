"""NDJSON battle journal.

Provides a structured per-session record of what the engine saw and did:
- One journal file per battle session
- Summary counters (events per type, reloads, errors, warnings)
- Summarization that drops verbose network signal lines on long sessions
- Optional mirroring to a stream
"""

import json
from datetime import datetime, timezone
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO
from enum import Enum


class JournalEventType(str, Enum):
    """Journal event types."""
    SESSION_START = "session.start"
    SESSION_END = "session.end"
    SIGNAL = "signal"
    TURN_CHANGE = "turn.change"
    HONOR_UPDATE = "honor.update"
    RELOAD = "reload"
    ENGAGE = "engage"
    RECOVERY = "recovery"
    WATCHDOG_STALL = "watchdog.stall"
    UI_STUCK = "ui.stuck"
    TERMINAL = "terminal"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"


@dataclass
class JournalEntry:
    """A single journal line."""
    timestamp: str
    event_type: str
    session_id: str
    payload: Dict[str, Any]
    turn: Optional[int] = None

    def to_ndjson(self) -> str:
        data = {
            "ts": self.timestamp,
            "type": self.event_type,
            "session": self.session_id,
            "payload": self.payload,
        }
        if self.turn is not None:
            data["turn"] = self.turn
        return json.dumps(data, separators=(',', ':'))


@dataclass
class JournalSummary:
    """Summary statistics for one session journal."""
    session_id: str
    total_events: int = 0
    dropped_events: int = 0
    event_counts: Dict[str, int] = field(default_factory=dict)
    first_timestamp: Optional[str] = None
    last_timestamp: Optional[str] = None
    reloads: int = 0
    errors: int = 0
    warnings: int = 0
    outcome: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "total_events": self.total_events,
            "dropped_events": self.dropped_events,
            "event_counts": self.event_counts,
            "first_timestamp": self.first_timestamp,
            "last_timestamp": self.last_timestamp,
            "reloads": self.reloads,
            "errors": self.errors,
            "warnings": self.warnings,
            "outcome": self.outcome,
        }


@dataclass
class SummarizationConfig:
    """When to start dropping verbose journal lines."""
    max_events_before_summary: int = 2000
    truncate_after_events: int = 5000
    summarize_verbose: List[str] = field(default_factory=lambda: [
        JournalEventType.SIGNAL,
    ])


class BattleJournal:
    """NDJSON journal for one battle session.

    Writes events to:
    - {base_dir}/sessions/{session_id}/journal.ndjson
    - {base_dir}/sessions/{session_id}/journal.summary.json
    """

    def __init__(
        self,
        session_id: str,
        base_dir: str = ".autobattle",
        config: Optional[SummarizationConfig] = None,
        stream: Optional[TextIO] = None,
    ):
        self.session_id = session_id
        self.base_dir = Path(base_dir)
        self.config = config or SummarizationConfig()
        self.stream = stream

        self.summary = JournalSummary(session_id=session_id)
        self._file: Optional[TextIO] = None
        self._summarizing = False

        self._init_dir()

    def _init_dir(self) -> None:
        session_dir = self.base_dir / "sessions" / self.session_id
        session_dir.mkdir(parents=True, exist_ok=True)
        self._journal_path = session_dir / "journal.ndjson"
        self._summary_path = session_dir / "journal.summary.json"

    @property
    def path(self) -> Path:
        return self._journal_path

    def _open_file(self) -> TextIO:
        if self._file is None:
            self._file = open(self._journal_path, 'a', encoding='utf-8')
        return self._file

    def log(
        self,
        event_type: str,
        payload: Dict[str, Any],
        turn: Optional[int] = None,
    ) -> None:
        """Append one entry. Verbose types are dropped past the truncation threshold."""
        entry = JournalEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=event_type,
            session_id=self.session_id,
            payload={k: self._safe_serialize(v) for k, v in payload.items()},
            turn=turn,
        )

        self._update_summary(entry)

        if self.summary.total_events >= self.config.truncate_after_events:
            if event_type in self.config.summarize_verbose:
                self.summary.dropped_events += 1
                return

        line = entry.to_ndjson() + "\n"

        if self.stream:
            self.stream.write(line)
            self.stream.flush()

        f = self._open_file()
        f.write(line)
        f.flush()

    def _update_summary(self, entry: JournalEntry) -> None:
        self.summary.total_events += 1
        self.summary.event_counts[entry.event_type] = (
            self.summary.event_counts.get(entry.event_type, 0) + 1
        )

        if self.summary.first_timestamp is None:
            self.summary.first_timestamp = entry.timestamp
        self.summary.last_timestamp = entry.timestamp

        if entry.event_type == JournalEventType.RELOAD:
            self.summary.reloads += 1
        elif entry.event_type == JournalEventType.ERROR:
            self.summary.errors += 1
        elif entry.event_type == JournalEventType.WARNING:
            self.summary.warnings += 1

        if (not self._summarizing and
            self.summary.total_events >= self.config.max_events_before_summary):
            self._summarizing = True
            self.log(
                JournalEventType.INFO,
                {"message": f"Journal summarization active after {self.summary.total_events} events"}
            )

    def session_start(self, mode: str, url: str) -> None:
        self.log(JournalEventType.SESSION_START, {"mode": mode, "url": url})

    def session_end(self, outcome: str, duration_seconds: float, turns: int, honors: int) -> None:
        self.summary.outcome = outcome
        self.log(
            JournalEventType.SESSION_END,
            {"outcome": outcome, "duration_seconds": duration_seconds, "honors": honors},
            turn=turns,
        )

    def signal(self, event_type: str, url: Optional[str] = None) -> None:
        self.log(JournalEventType.SIGNAL, {"event": event_type, "url": url})

    def turn_change(self, turn: int, source: str) -> None:
        """Log an observed turn change; ``source`` is "network" or "sampler"."""
        self.log(JournalEventType.TURN_CHANGE, {"source": source}, turn=turn)

    def honor_update(self, honors: int, delta: int, turn: Optional[int] = None) -> None:
        self.log(JournalEventType.HONOR_UPDATE, {"honors": honors, "delta": delta}, turn=turn)

    def reload(self, reason: str, turn: Optional[int] = None) -> None:
        self.log(JournalEventType.RELOAD, {"reason": reason}, turn=turn)

    def engage(self, outcome: str, turn: Optional[int] = None) -> None:
        self.log(JournalEventType.ENGAGE, {"outcome": outcome}, turn=turn)

    def recovery(self, over: bool, reason: str, turn: Optional[int] = None) -> None:
        self.log(JournalEventType.RECOVERY, {"over": over, "reason": reason}, turn=turn)

    def watchdog_stall(self, idle_ms: float, turn: Optional[int] = None) -> None:
        self.log(JournalEventType.WATCHDOG_STALL, {"idle_ms": idle_ms}, turn=turn)

    def ui_stuck(self, misses: int, turn: Optional[int] = None) -> None:
        self.log(JournalEventType.UI_STUCK, {"misses": misses}, turn=turn)

    def terminal(self, outcome: str, reason: str, turn: Optional[int] = None) -> None:
        self.log(JournalEventType.TERMINAL, {"outcome": outcome, "reason": reason}, turn=turn)

    def error(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        payload = {"message": message}
        if details:
            payload["details"] = details
        self.log(JournalEventType.ERROR, payload)

    def warning(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        payload = {"message": message}
        if details:
            payload["details"] = details
        self.log(JournalEventType.WARNING, payload)

    def _safe_serialize(self, value: Any) -> Any:
        try:
            json.dumps(value)
            return value
        except (TypeError, ValueError):
            return str(value)

    def get_summary(self) -> JournalSummary:
        return self.summary

    def write_summary(self) -> None:
        with open(self._summary_path, 'w', encoding='utf-8') as f:
            json.dump(self.summary.to_dict(), f, indent=2)

    def close(self) -> None:
        """Close the journal and write the final summary."""
        self.write_summary()
        if self._file:
            self._file.close()
            self._file = None


def create_journal(
    session_id: str,
    base_dir: str = ".autobattle",
    stream: Optional[TextIO] = None,
) -> BattleJournal:
    """Create a journal for a battle session."""
    return BattleJournal(session_id, base_dir, stream=stream)
