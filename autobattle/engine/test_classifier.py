"""Tests for the event classifier."""

import json

import pytest

from autobattle.config import Endpoints
from autobattle.engine.classifier import EventClassifier, join_error_kind, scan_scenario
from autobattle.engine.events import (
    RAW_MESSAGE,
    AbilityUsed,
    AttackResolved,
    BattleConcluded,
    BossDied,
    EventBus,
    JoinError,
    PartyWiped,
    RawMessage,
    SummonUsed,
    TurnAdvanced,
)

HOST = "https://game.granbluefantasy.jp"


@pytest.fixture
def classifier():
    return EventClassifier(EventBus("typed"))


class TestScanScenario:
    def test_first_decisive_command_wins(self):
        assert scan_scenario([{"cmd": "attack"}, {"cmd": "win"}], ["win"], ["lose"]) == "win"
        assert scan_scenario([{"cmd": "lose"}, {"cmd": "win"}], ["win"], ["lose"]) == "lose"
        assert scan_scenario(["damage", "win"], ["win"], ["lose"]) == "win"

    def test_no_decision(self):
        assert scan_scenario([{"cmd": "attack"}], ["win"], ["lose"]) is None
        assert scan_scenario(None, ["win"], ["lose"]) is None
        assert scan_scenario({"cmd": "win"}, ["win"], ["lose"]) is None


class TestClassify:
    """Pure classification of URL + payload pairs."""

    def test_turn_start(self, classifier):
        event = classifier.classify(f"{HOST}/rest/multiraid/start.json?_=1", {"turn": 3})
        assert isinstance(event, TurnAdvanced)
        assert event.turn == 3

    def test_turn_start_without_turn_is_ignored(self, classifier):
        assert classifier.classify(f"{HOST}/rest/raid/start.json", {"boss": {}}) is None

    def test_action_results(self, classifier):
        payload = {"scenario": [{"cmd": "attack"}], "status": {"turn": 5}}
        attack = classifier.classify(f"{HOST}/rest/multiraid/normal_attack_result.json", payload)
        ability = classifier.classify(f"{HOST}/rest/multiraid/ability_result.json", payload)
        summon = classifier.classify(f"{HOST}/rest/multiraid/summon_result.json", {"scenario": []})

        assert isinstance(attack, AttackResolved) and attack.turn == 5
        assert isinstance(ability, AbilityUsed) and ability.turn == 5
        assert isinstance(summon, SummonUsed) and summon.turn is None

    def test_terminal_commands_in_any_action_result(self, classifier):
        win = {"scenario": [{"cmd": "damage"}, {"cmd": "win"}]}
        lose = {"scenario": [{"cmd": "lose"}]}
        assert isinstance(classifier.classify(f"{HOST}/rest/raid/ability_result.json", win), BossDied)
        assert isinstance(classifier.classify(f"{HOST}/rest/raid/summon_result.json", lose), PartyWiped)

    def test_win_and_lose_in_one_payload(self, classifier):
        payload = {"scenario": [{"cmd": "win"}, {"cmd": "lose"}]}
        event = classifier.classify(f"{HOST}/rest/raid/normal_attack_result.json", payload)
        assert isinstance(event, BossDied)

    def test_conclusion_needs_no_payload(self, classifier):
        event = classifier.classify(f"{HOST}/resultmulti/data/123", None)
        assert isinstance(event, BattleConcluded)

    def test_string_and_bytes_payloads(self, classifier):
        body = json.dumps({"turn": 2})
        url = f"{HOST}/rest/raid/start.json"
        assert classifier.classify(url, body).turn == 2
        assert classifier.classify(url, body.encode()).turn == 2
        assert classifier.classify(url, "not json") is None

    def test_other_hosts_and_paths_ignored(self, classifier):
        assert classifier.classify("https://other.example/rest/raid/start.json", {"turn": 1}) is None
        assert classifier.classify(f"{HOST}/rest/user/status", {"turn": 1}) is None

    def test_join_errors(self, classifier):
        url = f"{HOST}/quest/check_multi_start"
        full = classifier.classify(url, {"popup": {"body": "This raid battle is full."}})
        assert isinstance(full, JoinError)
        assert full.kind == "full"
        assert classifier.classify(url, {"ok": True}) is None

    def test_custom_endpoints(self):
        endpoints = Endpoints(host="", win_commands=["finished"])
        classifier = EventClassifier(EventBus(), endpoints)
        event = classifier.classify("/rest/raid/normal_attack_result.json", {"scenario": ["finished"]})
        assert isinstance(event, BossDied)


class TestJoinErrorKind:
    def test_kinds(self):
        assert join_error_kind("You can only join three raid battles at once") == "concurrent_limit"
        assert join_error_kind("This raid battle has already ended.") == "already_ended"
        assert join_error_kind("Check your pending battles.") == "pending_battles"
        assert join_error_kind("Something else") == "unknown"


class TestHandle:
    """Bus integration."""

    @pytest.mark.asyncio
    async def test_one_event_per_message(self):
        raw = EventBus("raw")
        typed = EventBus("typed")
        seen = []
        typed.on("turn_advanced", seen.append)
        typed.on("boss_died", seen.append)
        classifier = EventClassifier(typed)

        with classifier.attached(raw):
            await raw.emit(RAW_MESSAGE, RawMessage(url=f"{HOST}/rest/raid/start.json", payload={"turn": 1}))
            await raw.emit(RAW_MESSAGE, {"url": f"{HOST}/rest/raid/normal_attack_result.json",
                                         "payload": {"scenario": ["win"]}})
            await raw.emit(RAW_MESSAGE, (f"{HOST}/assets/img.png", None))

        assert [e.type for e in seen] == ["turn_advanced", "boss_died"]
        assert classifier.classified == 2
        assert classifier.ignored == 1
        assert raw.listener_count() == 0
