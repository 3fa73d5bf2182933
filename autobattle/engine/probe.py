"""Collaborator protocols consumed by the battle engine.

The engine never talks to a browser directly. It is handed a
``DocumentProbe`` (on-demand reads and actions against the current page), an
``EventSource`` (intercepted network traffic) and a ``Clock``. Concrete
implementations live in ``autobattle.browser``; tests use the fakes in
``autobattle.e2e.harness``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Protocol, runtime_checkable

from .progress import SampledState
from ..errors import NavigationInterrupted

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


@runtime_checkable
class DocumentProbe(Protocol):
    """Protocol every document accessor must follow.

    All methods may raise; the engine wraps the probe in ``SafeProbe``.
    """

    async def exists(self, marker: str, timeout_ms: int = 0, require_visible: bool = False) -> bool:
        """Wait up to ``timeout_ms`` for ``marker`` to be present (and visible)."""
        ...

    async def read_text(self, marker: str) -> str:
        """Text content of the first element matching ``marker``."""
        ...

    async def sample_battle_state(self) -> SampledState:
        """Turn and honor totals in a single round trip."""
        ...

    async def click(self, marker: str) -> None:
        """Click ``marker``. Retries with backoff are the implementation's job."""
        ...

    async def reload(self) -> None:
        """Reload the page and wait for minimal load readiness."""
        ...

    def url(self) -> str:
        """Current document URL."""
        ...


@runtime_checkable
class EventSource(Protocol):
    """Emitter interface shared by raw transport sources and the typed event bus."""

    def on(self, event_type: str, handler: Handler) -> None:
        ...

    def off(self, event_type: str, handler: Handler) -> None:
        ...

    def once(self, event_type: str, handler: Handler) -> None:
        ...


class Clock(Protocol):
    """Time source; every explicit delay in the engine goes through ``sleep_ms``."""

    def now_ms(self) -> float:
        ...

    async def sleep_ms(self, ms: float) -> None:
        ...


class SystemClock:
    """Monotonic wall clock backed by asyncio."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000

    async def sleep_ms(self, ms: float) -> None:
        if ms > 0:
            await asyncio.sleep(ms / 1000)


class SafeProbe:
    """Wraps a ``DocumentProbe`` so that no read or action ever raises.

    Failures are converted to neutral defaults: ``False`` for presence checks
    and actions, ``""`` for text and URL, ``SampledState(0, None)`` for state
    samples. Navigation races are logged at DEBUG, anything else at WARNING.
    ``asyncio.CancelledError`` is never swallowed.
    """

    def __init__(self, probe: DocumentProbe):
        self.inner = probe
        self.failures = 0

    def _absorb(self, operation: str, error: Exception) -> None:
        self.failures += 1
        if isinstance(error, NavigationInterrupted):
            logger.debug("%s interrupted by navigation: %s", operation, error)
        else:
            logger.warning("%s failed: %s: %s", operation, type(error).__name__, error)

    async def exists(self, marker: str, timeout_ms: int = 0, require_visible: bool = False) -> bool:
        try:
            return bool(await self.inner.exists(marker, timeout_ms, require_visible))
        except Exception as e:
            self._absorb(f"exists({marker})", e)
            return False

    async def read_text(self, marker: str) -> str:
        try:
            return (await self.inner.read_text(marker)) or ""
        except Exception as e:
            self._absorb(f"read_text({marker})", e)
            return ""

    async def sample_battle_state(self) -> SampledState:
        try:
            state = await self.inner.sample_battle_state()
        except Exception as e:
            self._absorb("sample_battle_state", e)
            return SampledState()
        return SampledState.coerce(state)

    async def click(self, marker: str) -> bool:
        try:
            await self.inner.click(marker)
            return True
        except Exception as e:
            self._absorb(f"click({marker})", e)
            return False

    async def reload(self) -> bool:
        try:
            await self.inner.reload()
            return True
        except Exception as e:
            self._absorb("reload", e)
            return False

    def url(self) -> str:
        try:
            return self.inner.url() or ""
        except Exception as e:
            self._absorb("url", e)
            return ""
