"""BattleHarness for E2E testing.

Provides a scripted page (``FakeDocument``), a virtual clock (``FakeClock``)
and a raw network bus so full battle flows run deterministically without a
browser. Virtual time only moves when the engine sleeps or waits.
"""

import asyncio
import inspect
import random
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from autobattle.config import BattleConfig
from autobattle.engine.classifier import EventClassifier
from autobattle.engine.events import RAW_MESSAGE, EventBus, EventKind, RawMessage, subscription
from autobattle.engine.probe import SafeProbe
from autobattle.engine.progress import (
    BattleResult,
    HonorProgress,
    Mode,
    ProgressRecord,
    SampledState,
    Session,
)
from autobattle.engine.reconcile import ReconciliationLoop
from autobattle.engine.recovery import RecoveryCoordinator
from autobattle.engine.sampler import StateSampler
from autobattle.engine.session import BattleRunner
from autobattle.engine.strategy import EngageOutcome, EngagementStrategy, strategy_for
from autobattle.errors import ProbeReadFailure

HOST = "https://game.granbluefantasy.jp"
BATTLE_URL = f"{HOST}/#raid_multi/1234567890"
RESULT_URL = f"{HOST}/#result_multi/1234567890"
LANDING_URL = f"{HOST}/#mypage"


async def _call(callback: Callable, *args: Any) -> Any:
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


# ----------------------------------------------------------------------
# Raw message builders
# ----------------------------------------------------------------------

def turn_start_message(turn: int) -> RawMessage:
    return RawMessage(url=f"{HOST}/rest/multiraid/start.json?_=1", payload={"turn": turn})


def attack_message(turn: Optional[int] = None, commands: Iterable[str] = ("attack", "damage")) -> RawMessage:
    payload: Dict[str, Any] = {"scenario": [{"cmd": c} for c in commands]}
    if turn is not None:
        payload["status"] = {"turn": turn}
    return RawMessage(url=f"{HOST}/rest/multiraid/normal_attack_result.json", payload=payload)


def boss_died_message() -> RawMessage:
    return attack_message(commands=("attack", "damage", "win"))


def party_wiped_message() -> RawMessage:
    return attack_message(commands=("attack", "lose"))


def conclusion_message() -> RawMessage:
    return RawMessage(url=f"{HOST}/resultmulti/data/1234567890", payload=None)


# ----------------------------------------------------------------------
# Fakes
# ----------------------------------------------------------------------

class FakeClock:
    """Virtual millisecond clock.

    ``sleep_ms`` advances time and fires any callbacks scheduled with
    ``call_at`` in due order.
    """

    def __init__(self, start_ms: float = 0.0):
        self.now = start_ms
        self.slept_ms = 0.0
        self._timers: List[Tuple[float, int, Callable[[], Any]]] = []
        self._seq = 0

    def now_ms(self) -> float:
        return self.now

    def call_at(self, due_ms: float, callback: Callable[[], Any]) -> None:
        self._seq += 1
        self._timers.append((due_ms, self._seq, callback))
        self._timers.sort()

    async def advance(self, ms: float) -> None:
        target = self.now + ms
        while self._timers and self._timers[0][0] <= target:
            due, _, callback = self._timers.pop(0)
            self.now = max(self.now, due)
            await _call(callback)
        self.now = max(self.now, target)

    async def sleep_ms(self, ms: float) -> None:
        if ms > 0:
            self.slept_ms += ms
            await self.advance(ms)
        await asyncio.sleep(0)


class FakeDocument:
    """Scripted ``DocumentProbe``.

    ``present`` holds marker strings that exist and are visible; ``hidden``
    holds markers that exist but are not visible. Waiting for an absent
    marker costs its full timeout in virtual time.
    """

    def __init__(
        self,
        url: str = BATTLE_URL,
        present: Optional[Iterable[str]] = None,
        hidden: Optional[Iterable[str]] = None,
        texts: Optional[Dict[str, str]] = None,
        clock: Optional[FakeClock] = None,
        fail: bool = False,
    ):
        self.current_url = url
        self.present: Set[str] = set(present or ())
        self.hidden: Set[str] = set(hidden or ())
        self.texts: Dict[str, str] = dict(texts or {})
        self.clock = clock
        self.fail = fail
        self.state = SampledState()

        self.reloads = 0
        self.clicks: List[str] = []
        self.samples = 0
        self.calls = 0
        self.on_click: Dict[str, Callable[[], Any]] = {}
        self.on_reload: Optional[Callable[[], Any]] = None

    def _touch(self, operation: str) -> None:
        self.calls += 1
        if self.fail:
            raise ProbeReadFailure(f"{operation}: page unavailable")

    def set_state(self, turn: int = 0, honors: Optional[int] = None) -> None:
        self.state = SampledState(turn=turn, honors=honors)

    def show(self, *markers: str) -> None:
        self.present.update(markers)

    def hide(self, *markers: str) -> None:
        self.present.difference_update(markers)

    async def exists(self, marker: str, timeout_ms: int = 0, require_visible: bool = False) -> bool:
        self._touch("exists")
        if marker in self.present:
            return True
        if marker in self.hidden and not require_visible:
            return True
        if timeout_ms > 0 and self.clock is not None:
            await self.clock.sleep_ms(timeout_ms)
        return False

    async def read_text(self, marker: str) -> str:
        self._touch("read_text")
        return self.texts.get(marker, "")

    async def sample_battle_state(self) -> SampledState:
        self._touch("sample_battle_state")
        self.samples += 1
        return self.state

    async def click(self, marker: str) -> None:
        self._touch("click")
        if marker not in self.present and marker not in self.hidden:
            raise ProbeReadFailure(f"click: {marker} not found")
        self.clicks.append(marker)
        hook = self.on_click.get(marker)
        if hook is not None:
            await _call(hook)

    async def reload(self) -> None:
        self._touch("reload")
        self.reloads += 1
        if self.on_reload is not None:
            await _call(self.on_reload)

    def url(self) -> str:
        self._touch("url")
        return self.current_url


class FakeStrategy(EngagementStrategy):
    """Strategy that only counts calls and anchors activity like the real one."""

    def __init__(self, *args, mode: Mode = Mode.HANDS_OFF, outcome: EngageOutcome = EngageOutcome.ACTIVATED,
                 act_on_turns: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.mode = mode
        self.outcome = outcome
        self.act_on_turns = act_on_turns
        self.resumes = 0
        self.polled: List[int] = []
        self.acted_turns: List[int] = []

    async def engage(self, turn: Optional[int] = None) -> EngageOutcome:
        self.engagements += 1
        self.record.mark_activity(self.clock.now_ms())
        return self.outcome

    async def on_reload_resume(self) -> EngageOutcome:
        self.resumes += 1
        return await self.engage()

    async def poll_turn(self, turn: int) -> bool:
        self.polled.append(turn)
        if not self.act_on_turns or turn in self.acted_turns:
            return False
        self.acted_turns.append(turn)
        await self.clock.sleep_ms(100)
        return True


# ----------------------------------------------------------------------
# Harness
# ----------------------------------------------------------------------

LIVE_BATTLE = "live"


class BattleHarness:
    """Wires a full battle against the fakes.

    - run(): run one battle through ``BattleRunner``
    - build_loop(): a bare ``ReconciliationLoop`` for tick-level tests
    - emit()/emit_at(): publish raw network messages now or at a virtual time
    """

    def __init__(
        self,
        mode: Mode = Mode.HANDS_OFF,
        options: Optional[Dict[str, Any]] = None,
        url: str = BATTLE_URL,
        present: Optional[Iterable[str]] = LIVE_BATTLE,
        fail: bool = False,
        seed: int = 7,
    ):
        self.config = BattleConfig.from_options(options)
        self.markers = self.config.markers
        self.clock = FakeClock()
        if present == LIVE_BATTLE:
            present = self.live_markers()
        self.document = FakeDocument(url=url, present=present, clock=self.clock, fail=fail)
        self.source = EventBus("raw")
        self.session = Session(mode=mode, max_wait_ms=self.config.max_wait_ms)
        self.rng = random.Random(seed)
        self.runner = BattleRunner(
            self.document, self.source, self.config, clock=self.clock, rng=self.rng
        )

    def live_markers(self) -> Set[str]:
        m = self.markers
        return {m.hands_off_control, m.attack_control, m.attack_ready, m.in_progress}

    async def run(self) -> BattleResult:
        return await self.runner.run(self.session)

    async def emit(self, *messages: RawMessage) -> None:
        for message in messages:
            await self.source.emit(RAW_MESSAGE, message)

    def emit_at(self, due_ms: float, *messages: RawMessage) -> None:
        self.clock.call_at(due_ms, lambda: self.emit(*messages))

    def stop_at(self, due_ms: float, reason: str = "stop_requested") -> None:
        self.clock.call_at(due_ms, lambda: self.session.stop(reason))

    @property
    def reloads(self) -> int:
        return self.document.reloads

    def build_loop(
        self,
        strategy: Optional[EngagementStrategy] = None,
        record: Optional[ProgressRecord] = None,
        honors: Optional[HonorProgress] = None,
        track_honors: bool = False,
        initial_turn: int = 0,
    ) -> ReconciliationLoop:
        """A loop wired to the fakes; the caller attaches the record to the bus."""
        probe = SafeProbe(self.document)
        record = record or ProgressRecord()
        self.session.start_ms = self.clock.now_ms()
        self.session.track_honors = track_honors
        record.mark_activity(self.session.start_ms)
        honors = honors or HonorProgress(target=self.config.honor_target)
        if strategy is None:
            strategy = strategy_for(self.session.mode, probe, self.config, self.clock, record, self.rng)
        recovery = RecoveryCoordinator(probe, self.config, self.session, strategy)
        return ReconciliationLoop(
            probe, self.session, record, honors, strategy, recovery,
            StateSampler(probe), self.config, self.clock, initial_turn=initial_turn,
        )

    def fake_strategy(self, record: ProgressRecord, **kwargs: Any) -> FakeStrategy:
        return FakeStrategy(
            SafeProbe(self.document), self.config, self.clock, record, self.rng,
            mode=self.session.mode, **kwargs,
        )

    @contextmanager
    def attached(self, record: ProgressRecord) -> Iterator[EventBus]:
        """Classify raw messages into ``record`` for the duration of the block."""
        bus = EventBus("typed")
        classifier = EventClassifier(bus, self.config.endpoints)

        def apply(event: Any) -> None:
            record.apply(event, self.clock.now_ms())

        with classifier.attached(self.source), subscription(bus, [(k.value, apply) for k in EventKind]):
            yield bus
