from __future__ import annotations

from typing import Any, Callable

import pytest

from backend.replay.models import HandHistoryModel


class ManualCall:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Collects deferred callbacks so tests decide when they fire."""

    def __init__(self) -> None:
        self.calls: list[ManualCall] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualCall:
        call = ManualCall(delay, callback)
        self.calls.append(call)
        return call

    def pending(self) -> list[ManualCall]:
        return [call for call in self.calls if not call.cancelled]

    def fire_all(self) -> int:
        fired = 0
        for call in self.pending():
            call.cancelled = True
            call.callback()
            fired += 1
        return fired


def heads_up_payload() -> dict[str, Any]:
    return {
        "gameInfo": {"handId": "HU-1", "smallBlind": 1, "bigBlind": 2, "tableSize": 2, "dealerSeat": 1},
        "players": [
            {"seat": 1, "name": "P1", "isHero": True, "startingStack": 100, "position": "SB", "holeCards": ["Ah", "Kd"]},
            {"seat": 2, "name": "P2", "isHero": False, "startingStack": 100, "position": "BB", "finalCards": ["Qs", "Qc"]},
        ],
        "streets": [
            {
                "boardCards": [],
                "actions": [
                    {"playerName": "P1", "kind": "postSmallBlind", "amount": 1},
                    {"playerName": "P2", "kind": "postBigBlind", "amount": 2},
                    {"playerName": "P1", "kind": "raise", "amount": 6},
                    {"playerName": "P2", "kind": "call", "amount": 6},
                ],
            },
            {
                "boardCards": ["2c", "7d", "9h"],
                "actions": [
                    {"playerName": "P2", "kind": "check"},
                    {"playerName": "P1", "kind": "check"},
                ],
            },
            {
                "boardCards": ["Js"],
                "actions": [
                    {"playerName": "P2", "kind": "check"},
                    {"playerName": "P1", "kind": "bet", "amount": 10},
                    {"playerName": "P2", "kind": "call", "amount": 10},
                ],
            },
            {
                "boardCards": ["3s"],
                "actions": [
                    {"playerName": "P2", "kind": "check"},
                    {"playerName": "P1", "kind": "check"},
                ],
            },
        ],
        "potOutcome": {
            "amount": 32,
            "distribution": [
                {"playerName": "P1", "amount": 32},
                {"playerName": "P2", "amount": 0},
            ],
        },
    }


def three_way_flop_fold_payload() -> dict[str, Any]:
    # Villain folds the flop but the record still carries shown cards for them.
    return {
        "players": [
            {"seat": 3, "name": "Hero", "isHero": True, "startingStack": 200, "holeCards": ["Td", "Tc"]},
            {"seat": 5, "name": "Villain", "isHero": False, "startingStack": 150, "finalCards": ["8s", "8h"]},
            {"seat": 7, "name": "Shark", "isHero": False, "startingStack": 300, "holeCards": ["As", "Qs"]},
        ],
        "streets": [
            {
                "boardCards": [],
                "actions": [
                    {"playerName": "Villain", "kind": "posts small blind", "amount": 1},
                    {"playerName": "Shark", "kind": "posts big blind", "amount": 2},
                    {"playerName": "Hero", "kind": "calls", "amount": 2},
                    {"playerName": "Villain", "kind": "calls", "amount": 2},
                    {"playerName": "Shark", "kind": "checks"},
                ],
            },
            {
                "boardCards": ["Qd", "5c", "2h"],
                "actions": [
                    {"playerName": "Villain", "kind": "checks"},
                    {"playerName": "Shark", "kind": "bets", "amount": 4},
                    {"playerName": "Hero", "kind": "calls", "amount": 4},
                    {"playerName": "Villain", "kind": "folds"},
                ],
            },
            {
                "boardCards": ["Kc"],
                "actions": [
                    {"playerName": "Shark", "kind": "checks"},
                    {"playerName": "Hero", "kind": "checks"},
                ],
            },
            {
                "boardCards": ["4d"],
                "actions": [
                    {"playerName": "Shark", "kind": "checks"},
                    {"playerName": "Hero", "kind": "checks"},
                ],
            },
        ],
        "potOutcome": {"amount": 14, "distribution": [{"playerName": "Shark", "amount": 14}]},
    }


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def heads_up_hand() -> HandHistoryModel:
    return HandHistoryModel.model_validate(heads_up_payload())


@pytest.fixture
def flop_fold_hand() -> HandHistoryModel:
    return HandHistoryModel.model_validate(three_way_flop_fold_payload())


@pytest.fixture
def heads_up_json() -> dict[str, Any]:
    return heads_up_payload()
