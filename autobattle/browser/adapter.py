"""Playwright-backed page collaborators.

``PlaywrightProbe`` implements ``DocumentProbe`` over an async Playwright
``Page``. ``NetworkEventSource`` listens to the page's responses and
publishes the interesting ones as ``RawMessage`` objects.
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Response
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import Endpoints, Markers
from ..engine.events import RAW_MESSAGE, EventBus, RawMessage
from ..engine.probe import Clock, SystemClock
from ..engine.progress import SampledState
from ..engine.sampler import parse_points, parse_turn_digits
from ..errors import NavigationInterrupted, ProbeReadFailure
from .retry import ErrorClass, ErrorClassifier, RetryPolicy

logger = logging.getLogger(__name__)

_SAMPLE_SCRIPT = """
(sel) => {
    const state = { digits: [], points: null };
    const container = document.querySelector(sel.turnContainer);
    if (container) {
        state.digits = Array.from(container.querySelectorAll(sel.turnDigit)).map(d => d.className);
    }
    const point = document.querySelector(sel.honorPoints);
    if (point) {
        state.points = point.textContent;
    }
    return state;
}
"""

_classifier = ErrorClassifier()


def translate_error(error: Exception) -> Exception:
    """Map a Playwright error onto the probe error taxonomy."""
    if _classifier.classify(error) == ErrorClass.NAVIGATION:
        return NavigationInterrupted(str(error))
    return ProbeReadFailure(str(error))


class PlaywrightProbe:
    """``DocumentProbe`` over a Playwright page."""

    def __init__(
        self,
        page: Page,
        markers: Optional[Markers] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None,
        reload_timeout_ms: int = 30_000,
    ):
        self.page = page
        self.markers = markers or Markers()
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock or SystemClock()
        self.reload_timeout_ms = reload_timeout_ms

    async def exists(self, marker: str, timeout_ms: int = 0, require_visible: bool = False) -> bool:
        try:
            if timeout_ms <= 0:
                if require_visible:
                    return await self.page.locator(marker).first.is_visible()
                return await self.page.query_selector(marker) is not None
            await self.page.wait_for_selector(
                marker,
                state="visible" if require_visible else "attached",
                timeout=timeout_ms,
            )
            return True
        except PlaywrightTimeoutError:
            return False
        except PlaywrightError as e:
            raise translate_error(e) from e

    async def read_text(self, marker: str) -> str:
        try:
            element = await self.page.query_selector(marker)
            if element is None:
                return ""
            return (await element.text_content()) or ""
        except PlaywrightError as e:
            raise translate_error(e) from e

    async def sample_battle_state(self) -> SampledState:
        selectors = {
            "turnContainer": self.markers.turn_container,
            "turnDigit": self.markers.turn_digit,
            "honorPoints": self.markers.honor_points,
        }
        try:
            raw = await self.page.evaluate(_SAMPLE_SCRIPT, selectors)
        except PlaywrightError as e:
            raise translate_error(e) from e
        raw = raw or {}
        return SampledState(
            turn=parse_turn_digits(raw.get("digits") or []),
            honors=parse_points(raw.get("points")),
        )

    async def click(self, marker: str) -> None:
        """Click with exponential backoff between attempts."""
        policy = self.retry_policy
        for attempt in range(policy.max_retries + 1):
            try:
                await self.page.click(marker, timeout=policy.action_timeout_ms)
                logger.debug("Clicked: %s", marker)
                return
            except PlaywrightError as e:
                if _classifier.classify(e) != ErrorClass.RETRYABLE or attempt >= policy.max_retries:
                    raise translate_error(e) from e
                backoff_ms = policy.calculate_backoff(attempt)
                logger.warning(
                    "Click attempt %d/%d failed: %s (retrying in %.0fms)",
                    attempt + 1, policy.max_retries + 1, marker, backoff_ms,
                )
                await self.clock.sleep_ms(backoff_ms)

    async def reload(self) -> None:
        try:
            await self.page.reload(wait_until="domcontentloaded", timeout=self.reload_timeout_ms)
        except PlaywrightError as e:
            raise translate_error(e) from e

    def url(self) -> str:
        return self.page.url


class NetworkEventSource(EventBus):
    """Publishes recognized page responses as ``RawMessage`` events.

    A cheap URL pre-filter (host plus endpoint patterns) runs before any
    header or body is touched; only JSON responses are decoded.
    """

    def __init__(self, page: Page, endpoints: Optional[Endpoints] = None):
        super().__init__("network")
        self.page = page
        self.endpoints = endpoints or Endpoints()
        self._patterns: List[re.Pattern] = [
            re.compile(p)
            for p in (
                self.endpoints.turn_start,
                self.endpoints.attack,
                self.endpoints.ability,
                self.endpoints.summon,
                self.endpoints.join,
                self.endpoints.conclusion,
            )
        ]
        self.listening = False
        self.forwarded = 0

    def wanted(self, url: str) -> bool:
        if self.endpoints.host and self.endpoints.host not in url:
            return False
        return any(p.search(url) for p in self._patterns)

    def start(self) -> None:
        if self.listening:
            return
        self.page.on("response", self._on_response)
        self.listening = True
        logger.info("Network listener started")

    def stop(self) -> None:
        if not self.listening:
            return
        self.page.remove_listener("response", self._on_response)
        self.listening = False
        logger.info("Network listener stopped")

    @asynccontextmanager
    async def listening_scope(self) -> AsyncIterator["NetworkEventSource"]:
        self.start()
        try:
            yield self
        finally:
            self.stop()

    async def _on_response(self, response: Response) -> None:
        url = response.url
        if not self.wanted(url):
            return

        try:
            content_type = response.headers.get("content-type", "")
        except PlaywrightError as e:
            logger.debug("Response headers unavailable for %s: %s", url, e)
            return
        if "application/json" not in content_type:
            return

        payload: Any = None
        try:
            payload = await response.json()
        except (PlaywrightError, ValueError) as e:
            # The body is gone once the page navigates; the URL alone still classifies.
            logger.debug("Response body unavailable for %s: %s", url, e)

        self.forwarded += 1
        await self.emit(RAW_MESSAGE, RawMessage(url=url, payload=payload))
