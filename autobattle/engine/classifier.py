"""Event classifier: raw transport messages to typed domain events.

Each recognized response yields exactly one event. Combat results are
classified by scanning the ordered ``scenario`` command list: the first win
command means the boss died, the first lose command means the party wiped,
and whichever comes first decides. Without either, the action-specific
event is emitted.
"""

from __future__ import annotations

import json
import logging
import re
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from ..config import Endpoints
from .events import (
    RAW_MESSAGE,
    AbilityUsed,
    AttackResolved,
    BattleConcluded,
    BossDied,
    DomainEvent,
    EventBus,
    JoinError,
    PartyWiped,
    RawMessage,
    SummonUsed,
    TurnAdvanced,
    subscription,
)

logger = logging.getLogger(__name__)

_ACTION_EVENTS = {
    "attack": AttackResolved,
    "ability": AbilityUsed,
    "summon": SummonUsed,
}

_JOIN_ERROR_TEXTS: Sequence[Tuple[str, str]] = (
    ("three raid battles", "concurrent_limit"),
    ("raid battle is full", "full"),
    ("pending battles", "pending_battles"),
    ("already ended", "already_ended"),
    ("home screen will now appear", "already_ended"),
)


def scan_scenario(commands: Any, win_commands: Sequence[str], lose_commands: Sequence[str]) -> Optional[str]:
    """Return ``"win"`` or ``"lose"`` for the first decisive command, else None."""
    if not isinstance(commands, list):
        return None
    for entry in commands:
        cmd = entry.get("cmd") if isinstance(entry, dict) else entry
        if cmd in win_commands:
            return "win"
        if cmd in lose_commands:
            return "lose"
    return None


def join_error_kind(text: str) -> str:
    lowered = text.lower()
    for needle, kind in _JOIN_ERROR_TEXTS:
        if needle in lowered:
            return kind
    return "unknown"


def _decode(payload: Any) -> Any:
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except ValueError:
            return None
    return payload


def _as_turn(value: Any) -> Optional[int]:
    try:
        turn = int(value)
    except (TypeError, ValueError):
        return None
    return turn if turn >= 0 else None


class EventClassifier:
    """Classifies raw messages and emits the result on a typed bus.

    The classifier only decodes payloads; it never touches the document.
    """

    def __init__(self, bus: EventBus, endpoints: Optional[Endpoints] = None):
        self.bus = bus
        self.endpoints = endpoints or Endpoints()
        self._patterns: List[Tuple[str, re.Pattern]] = [
            ("turn_start", re.compile(self.endpoints.turn_start)),
            ("attack", re.compile(self.endpoints.attack)),
            ("ability", re.compile(self.endpoints.ability)),
            ("summon", re.compile(self.endpoints.summon)),
            ("join", re.compile(self.endpoints.join)),
            ("conclusion", re.compile(self.endpoints.conclusion)),
        ]
        self.classified = 0
        self.ignored = 0

    def match(self, url: str) -> Optional[str]:
        """Name of the first endpoint pattern matching ``url``."""
        if self.endpoints.host and self.endpoints.host not in url:
            return None
        for name, pattern in self._patterns:
            if pattern.search(url):
                return name
        return None

    def classify(self, url: str, payload: Any) -> Optional[DomainEvent]:
        """Pure classification of one message; None when it is not ours."""
        endpoint = self.match(url)
        if endpoint is None:
            return None

        if endpoint == "conclusion":
            return BattleConcluded(url=url)

        data = _decode(payload)
        if not isinstance(data, dict):
            logger.debug("Undecodable payload from %s", url)
            return None

        if endpoint == "turn_start":
            turn = _as_turn(data.get("turn"))
            if turn is None:
                return None
            return TurnAdvanced(url=url, turn=turn)

        if endpoint == "join":
            return self._classify_join(url, data)

        verdict = scan_scenario(
            data.get("scenario"),
            self.endpoints.win_commands,
            self.endpoints.lose_commands,
        )
        if verdict == "win":
            return BossDied(url=url)
        if verdict == "lose":
            return PartyWiped(url=url)

        status = data.get("status")
        turn = _as_turn(status.get("turn")) if isinstance(status, dict) else None
        return _ACTION_EVENTS[endpoint](url=url, turn=turn)

    def _classify_join(self, url: str, data: dict) -> Optional[JoinError]:
        popup = data.get("popup")
        text = ""
        if isinstance(popup, dict):
            text = str(popup.get("body") or popup.get("title") or "")
        if not text:
            text = str(data.get("error") or data.get("message") or "")
        if not text:
            return None
        return JoinError(url=url, kind=join_error_kind(text), message=text.strip())

    async def handle(self, message: Any) -> Optional[DomainEvent]:
        """Bus handler for raw messages: classify and emit one event."""
        if isinstance(message, RawMessage):
            url, payload = message.url, message.payload
        elif isinstance(message, dict):
            url, payload = message.get("url", ""), message.get("payload")
        else:
            url, payload = message

        event = self.classify(url, payload)
        if event is None:
            self.ignored += 1
            return None

        self.classified += 1
        logger.debug("Network signal %s from %s", event.type, url)
        await self.bus.emit(event.type, event)
        return event

    @contextmanager
    def attached(self, source: Any) -> Iterator["EventClassifier"]:
        """Listen to raw messages on ``source`` for the duration of the block."""
        with subscription(source, [(RAW_MESSAGE, self.handle)]):
            yield self
