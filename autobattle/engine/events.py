"""Domain events and the in-process event bus.

Network responses arrive as ``RawMessage`` objects on a raw ``EventSource``.
The classifier turns each recognized one into exactly one typed domain event
and emits it on an ``EventBus``, where the session's ``ProgressRecord`` picks
it up. Delivery is at-least-once, so every handler must be idempotent.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Callable, Dict, Iterable, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Event type under which raw transport messages are published.
RAW_MESSAGE = "response"


class EventKind(str, Enum):
    """Bus event types for classified domain events."""

    TURN_ADVANCED = "turn_advanced"
    ATTACK_RESOLVED = "attack_resolved"
    ABILITY_USED = "ability_used"
    SUMMON_USED = "summon_used"
    BOSS_DIED = "boss_died"
    PARTY_WIPED = "party_wiped"
    BATTLE_CONCLUDED = "battle_concluded"
    JOIN_ERROR = "join_error"


class RawMessage(BaseModel):
    """An intercepted transport message: response URL plus decoded body."""

    url: str
    payload: Any = None
    received_at: datetime = Field(default_factory=datetime.now)


class _DomainEventBase(BaseModel):
    model_config = {"frozen": True}

    url: Optional[str] = None


class TurnAdvanced(_DomainEventBase):
    type: Literal["turn_advanced"] = "turn_advanced"
    turn: int = Field(ge=0)


class AttackResolved(_DomainEventBase):
    type: Literal["attack_resolved"] = "attack_resolved"
    turn: Optional[int] = None


class AbilityUsed(_DomainEventBase):
    type: Literal["ability_used"] = "ability_used"
    turn: Optional[int] = None


class SummonUsed(_DomainEventBase):
    type: Literal["summon_used"] = "summon_used"
    turn: Optional[int] = None


class BossDied(_DomainEventBase):
    type: Literal["boss_died"] = "boss_died"


class PartyWiped(_DomainEventBase):
    type: Literal["party_wiped"] = "party_wiped"


class BattleConcluded(_DomainEventBase):
    type: Literal["battle_concluded"] = "battle_concluded"


JoinErrorKind = Literal["already_ended", "full", "pending_battles", "concurrent_limit", "unknown"]


class JoinError(_DomainEventBase):
    type: Literal["join_error"] = "join_error"
    kind: JoinErrorKind = "unknown"
    message: str = ""


DomainEvent = Annotated[
    Union[
        TurnAdvanced,
        AttackResolved,
        AbilityUsed,
        SummonUsed,
        BossDied,
        PartyWiped,
        BattleConcluded,
        JoinError,
    ],
    Field(discriminator="type"),
]

Handler = Callable[[Any], Any]


@dataclass
class _Registration:
    handler: Handler
    once: bool = False


class EventBus:
    """Minimal async event emitter with ``on``/``off``/``once``.

    Handlers may be plain functions or coroutine functions. A failing
    handler is logged and does not prevent delivery to the others.
    """

    def __init__(self, name: str = "bus"):
        self.name = name
        self._handlers: Dict[str, List[_Registration]] = {}
        self.handler_failures = 0

    def on(self, event_type: str, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(_Registration(handler))

    def once(self, event_type: str, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(_Registration(handler, once=True))

    def off(self, event_type: str, handler: Handler) -> None:
        """Remove one registration of ``handler``; unknown handlers are ignored."""
        registrations = self._handlers.get(event_type)
        if not registrations:
            return
        for i, reg in enumerate(registrations):
            if reg.handler == handler:
                del registrations[i]
                break
        if not registrations:
            del self._handlers[event_type]

    def _discard(self, event_type: str, registration: _Registration) -> None:
        registrations = self._handlers.get(event_type, [])
        for i, reg in enumerate(registrations):
            if reg is registration:
                del registrations[i]
                break
        if not registrations:
            self._handlers.pop(event_type, None)

    def listener_count(self, event_type: Optional[str] = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(regs) for regs in self._handlers.values())

    def clear(self) -> None:
        self._handlers.clear()

    async def emit(self, event_type: str, event: Any = None) -> int:
        """Deliver ``event`` to every handler registered for ``event_type``.

        Returns the number of handlers that completed without raising.
        """
        registrations = list(self._handlers.get(event_type, []))
        delivered = 0
        for reg in registrations:
            if reg.once:
                self._discard(event_type, reg)
            try:
                result = reg.handler(event)
                if asyncio.iscoroutine(result):
                    await result
                delivered += 1
            except Exception as e:
                self.handler_failures += 1
                logger.warning(
                    "%s: handler %r for %s failed: %s",
                    self.name, reg.handler, event_type, e,
                )
        return delivered


@contextmanager
def subscription(source: Any, handlers: Iterable[Tuple[str, Handler]]) -> Iterator[None]:
    """Register ``handlers`` on ``source`` for the duration of the block.

    Everything that was registered is unregistered on every exit path,
    including a failure halfway through registration.
    """
    registered: List[Tuple[str, Handler]] = []
    try:
        for event_type, handler in handlers:
            source.on(event_type, handler)
            registered.append((event_type, handler))
        yield
    finally:
        for event_type, handler in reversed(registered):
            try:
                source.off(event_type, handler)
            except Exception as e:
                logger.warning("Failed to unregister %s listener: %s", event_type, e)
