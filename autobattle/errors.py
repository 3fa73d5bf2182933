"""Custom error types for autobattle."""


class AutobattleError(Exception):
    """Base error for all autobattle errors."""
    pass


class TransientUiTimeout(AutobattleError):
    """Raised when an expected control did not appear in time.

    Recovered locally by reload and retry, never surfaced to the caller.
    """

    def __init__(self, marker: str, timeout_ms: int):
        self.marker = marker
        self.timeout_ms = timeout_ms
        super().__init__(f"Control '{marker}' did not appear within {timeout_ms}ms")


class NavigationInterrupted(AutobattleError):
    """Raised when the document was torn down mid-probe by a navigation."""
    pass


class ProbeReadFailure(AutobattleError):
    """Raised by a document probe that could not read the page."""
    pass


class SessionInvalidated(AutobattleError):
    """The game redirected to a login or landing surface.

    Never raised out of the engine: the session is stopped with
    ``stop_reason="session_invalidated"`` instead.
    """

    message = "Session expired or redirected to landing page"

    def __init__(self, url: str = ""):
        self.url = url
        msg = self.message
        if url:
            msg += f" ({url})"
        super().__init__(msg)


class BattleLoadFailure(AutobattleError):
    """The engagement control never appeared and the page state is inconclusive."""

    def __init__(self, url: str = ""):
        self.url = url
        super().__init__(f"Battle failed to load. URL: {url}")


class BattleTimeout(AutobattleError):
    """The per-encounter wall-clock budget elapsed."""

    def __init__(self, elapsed_ms: float, max_wait_ms: float, turns: int = 0):
        self.elapsed_ms = elapsed_ms
        self.max_wait_ms = max_wait_ms
        self.turns = turns
        super().__init__(
            f"Battle timeout ({elapsed_ms:.0f}ms >= {max_wait_ms:.0f}ms, {turns} turns observed)"
        )
