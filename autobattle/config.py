"""Configuration models for autobattle.

All timing constants the engine uses live in ``BattleConfig`` so a run can be
tuned from one record. ``Markers`` holds every selector and URL fragment the
engine probes, ``Endpoints`` the network patterns the classifier recognizes.
"""

from __future__ import annotations

import re
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator


class Markers(BaseModel):
    """Document markers (CSS selectors and URL fragments) probed by the engine."""

    model_config = {"extra": "forbid", "frozen": True}

    # Engagement controls
    hands_off_control: str = ".btn-auto"
    attack_control: str = ".btn-attack-start"
    attack_ready: str = ".btn-attack-start.display-on"
    attack_inactive: str = ".btn-attack-start.display-off"
    cancel_inactive: str = ".btn-usual-cancel.display-off"
    in_progress: str = (
        ".btn-attack-start.display-on, .btn-usual-cancel, .btn-auto, .btn-cheer, .btn-salute"
    )

    # Popups and end markers
    ok_button: str = ".btn-usual-ok"
    popup_body: str = ".txt-popup-body, .prt-popup-body"
    popup_header: str = ".prt-popup-header"
    error_popup: str = ".pop-usual.common-pop-error.pop-show"
    empty_result: str = ".prt-result-cnt .txt-empty-result"
    rematch_fail: str = ".img-rematch-fail.popup-1, .img-rematch-fail.popup-2"
    rematch_fail_popup: str = ".pop-rematch-fail.pop-show"
    cheer_popup: str = ".pop-cheer.pop-show"
    cheer_button: str = ".btn-cheer, .btn-salute"
    salute_dismiss: str = ".btn-cheer, .btn-salute, .pop-cheer.pop-show .btn-usual-ok"
    elixir_popup: str = ".pop-use-elixir, .img-elixir"
    raid_ended_popup: str = ".pop-result-assist-raid.pop-show"
    raid_ended_ok: str = ".pop-result-assist-raid .btn-usual-ok"
    login: str = "#login-auth"

    # Sampler sources
    turn_container: str = ".prt-turn-info, #js-turn-num, #js-turn-num-count"
    turn_digit: str = "div[class*='num-info']"
    honor_points: str = ".lis-user.guild-member .txt-point"

    # Popup texts
    wipe_header_text: str = "Unable to Continue"
    waiting_for_turn_text: str = "Waiting for last turn"
    ended_texts: List[str] = Field(
        default_factory=lambda: ["already ended", "home screen will now appear", "pending battles"]
    )
    full_texts: List[str] = Field(default_factory=lambda: ["raid battle is full"])

    # URL fragments
    result_url_fragments: List[str] = Field(default_factory=lambda: ["#result", "#quest/index"])
    battle_url_fragments: List[str] = Field(default_factory=lambda: ["#raid", "_raid"])
    landing_urls: List[str] = Field(
        default_factory=lambda: [
            "https://game.granbluefantasy.jp/",
            "https://game.granbluefantasy.jp/#",
        ]
    )
    landing_url_fragments: List[str] = Field(
        default_factory=lambda: ["#mypage", "#top", "mobage.jp", "registration"]
    )

    def is_result_url(self, url: str) -> bool:
        return any(fragment in url for fragment in self.result_url_fragments)

    def is_battle_url(self, url: str) -> bool:
        return any(fragment in url for fragment in self.battle_url_fragments)

    def is_landing_url(self, url: str) -> bool:
        if url in self.landing_urls:
            return True
        return any(fragment in url for fragment in self.landing_url_fragments)


class Endpoints(BaseModel):
    """Network endpoint patterns recognized by the event classifier.

    Patterns are regular expressions searched against the response URL and
    are tried in declaration order: action results before the battle
    conclusion pattern.
    """

    model_config = {"extra": "forbid", "frozen": True}

    host: str = "granbluefantasy.jp"
    turn_start: str = r"/rest/(?:multi)?raid/start\.json"
    attack: str = r"/normal_attack_result\.json"
    ability: str = r"/ability_result\.json"
    summon: str = r"/summon_result\.json"
    conclusion: str = r"/result\.json|/resultmulti/data/"
    join: str = r"/quest/(?:raid_deck_data_create|check_multi_start)"

    win_commands: List[str] = Field(default_factory=lambda: ["win"])
    lose_commands: List[str] = Field(default_factory=lambda: ["lose"])

    @field_validator("turn_start", "attack", "ability", "summon", "conclusion", "join")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Reject patterns that do not compile."""
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid endpoint pattern {v!r}: {e}") from e
        return v


class BattleConfig(BaseModel):
    """Options and timings for one battle session.

    Recognized caller options accept their camelCase names
    (``maxBattleMinutes``, ``honorTarget``, ``fastRefresh``,
    ``stallThresholdMs``, ``refreshOnStart``, ``initialHonors``).
    """

    model_config = {"populate_by_name": True, "extra": "ignore", "frozen": True}

    max_battle_minutes: float = Field(15, alias="maxBattleMinutes", gt=0)
    honor_target: int = Field(0, alias="honorTarget", ge=0)
    fast_refresh: bool = Field(False, alias="fastRefresh")
    stall_threshold_ms: int = Field(12_000, alias="stallThresholdMs", gt=0)
    refresh_on_start: bool = Field(False, alias="refreshOnStart")
    initial_honors: int = Field(0, alias="initialHonors", ge=0)

    # Fixed loop cadence; no single sleep in a tick is longer than this.
    tick_interval_ms: int = 200
    # Turn must be unchanged this long before watchdogs are evaluated.
    watchdog_grace_ms: int = 1000
    # Minimum spacing between periodic honor goal checks.
    goal_check_interval_ms: int = 3000
    # Minimum spacing between batched DOM end-marker probes.
    end_probe_interval_ms: int = 1000
    # Consecutive ticks without in-progress markers before the UI counts as stuck.
    ui_miss_threshold: int = 4
    # Settle after the conclusion signal before returning.
    conclusion_settle_ms: int = 200
    # Settle after dismissing the "already ended" popup.
    dismiss_settle_ms: int = 1000
    # Settle after dismissing an "already ended" or "full" popup during load.
    early_popup_settle_ms: int = 800

    load_timeout_ms: int = 10_000
    control_timeout_ms: int = 5000
    per_turn_probe_timeout_ms: int = 1000
    per_turn_confirm_timeout_ms: int = 1000
    per_turn_grace_ms: int = 50
    ui_probe_timeout_ms: int = 100

    markers: Markers = Field(default_factory=Markers)
    endpoints: Endpoints = Field(default_factory=Endpoints)

    @property
    def max_wait_ms(self) -> float:
        return self.max_battle_minutes * 60 * 1000

    @property
    def terminal_settle_ms(self) -> int:
        """Settle after the reload that follows a terminal signal."""
        return 200 if self.fast_refresh else 500

    @property
    def reload_settle_ms(self) -> int:
        """Settle after a recovery or animation-skip reload."""
        return 400 if self.fast_refresh else 800

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "BattleConfig":
        """Validate a plain options mapping, as handed over by the outer run loop."""
        data = dict(options or {})
        data.update(overrides)
        return cls.model_validate(data)
