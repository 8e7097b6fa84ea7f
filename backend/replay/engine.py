from __future__ import annotations

import asyncio
import functools
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Literal, Protocol

from .models import (
    BLIND_KINDS,
    CHIP_KINDS,
    ActionKind,
    ActionModel,
    HandHistoryModel,
    LoggedActionModel,
    Phase,
    ReplaySnapshotModel,
    StackWarningModel,
    StepOutcome,
    TransitionErrorModel,
)

logger = logging.getLogger(__name__)

TransitionReason = Literal["not_started", "settlement_pending", "complete"]

_REASON_BY_PHASE: dict[Phase, TransitionReason] = {
    "ready": "not_started",
    "showdown": "settlement_pending",
    "settling": "settlement_pending",
    "complete": "complete",
}

_TRANSITION_MESSAGES: dict[TransitionReason, str] = {
    "not_started": "Replay has not been started. Call start() first.",
    "settlement_pending": "Showdown reached; waiting for the pot to settle.",
    "complete": "Replay is already complete.",
}


class BetConvention(str, Enum):
    """How the amount on a call/bet/raise is read.

    STREET_TOTAL treats it as the player's total commitment on the street
    (call-to / raise-to), so only the difference to what they already put in
    moves. INCREMENTAL treats it as the chips moved by that single action.
    """

    STREET_TOTAL = "street_total"
    INCREMENTAL = "incremental"


class ReplayError(ValueError):
    pass


class InvalidHandHistory(ReplayError):
    def __init__(self, problems: list[str]) -> None:
        super().__init__("Invalid hand history: " + "; ".join(problems))
        self.problems = problems


class IllegalTransition(ReplayError):
    def __init__(self, reason: TransitionReason, phase: Phase) -> None:
        super().__init__(_TRANSITION_MESSAGES[reason])
        self.reason = reason
        self.phase = phase

    def to_model(self) -> TransitionErrorModel:
        return TransitionErrorModel(reason=self.reason, message=str(self))


class InsufficientStack(ReplayError):
    def __init__(self, player_name: str, requested: float, available: float) -> None:
        super().__init__(f"{player_name} cannot cover {requested:g}; only {available:g} behind.")
        self.player_name = player_name
        self.requested = requested
        self.available = available

    def to_model(self) -> StackWarningModel:
        return StackWarningModel(
            player_name=self.player_name,
            requested=self.requested,
            available=self.available,
        )


class ScheduledCall(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        ...


class SchedulerUnavailable(ReplayError):
    pass


class LoopScheduler:
    """Runs deferred callbacks on the driver's running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise SchedulerUnavailable(
                "Settlement needs a running event loop; pass an explicit scheduler to drive a replay synchronously."
            ) from exc
        return loop.call_later(delay, callback)


@dataclass
class ReplayState:
    phase: Phase = "ready"
    street_index: int = 0
    action_index: int = 0
    pot: float = 0
    stacks: dict[str, float] = field(default_factory=dict)
    current_street_bets: dict[str, float] = field(default_factory=dict)
    folded: list[str] = field(default_factory=list)
    board: list[str] = field(default_factory=list)
    revealed_hands: dict[str, list[str]] = field(default_factory=dict)
    winners: list[str] = field(default_factory=list)
    action_log: list[LoggedActionModel] = field(default_factory=list)


@dataclass(frozen=True)
class StepResult:
    outcome: StepOutcome
    error: IllegalTransition | None = None
    warnings: tuple[InsufficientStack, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.error is None


def validate_hand_history(hand: HandHistoryModel) -> None:
    problems: list[str] = []

    heroes = [player.name for player in hand.players if player.is_hero]
    if len(heroes) != 1:
        problems.append(f"expected exactly one hero, found {len(heroes)}")

    seat_counts = Counter(player.seat for player in hand.players)
    duplicate_seats = sorted(seat for seat, count in seat_counts.items() if count > 1)
    if duplicate_seats:
        problems.append(f"duplicate seats: {duplicate_seats}")

    name_counts = Counter(player.name for player in hand.players)
    duplicate_names = sorted(name for name, count in name_counts.items() if count > 1)
    if duplicate_names:
        problems.append(f"duplicate player names: {duplicate_names}")

    if not hand.streets:
        problems.append("hand has no streets")

    names = set(name_counts)
    for street_index, street in enumerate(hand.streets):
        for action_index, action in enumerate(street.actions):
            if action.player_name not in names:
                problems.append(
                    f"street {street_index} action {action_index} references unknown player {action.player_name!r}"
                )

    for share in hand.pot_outcome.distribution:
        if share.player_name not in names:
            problems.append(f"pot distribution references unknown player {share.player_name!r}")

    if problems:
        raise InvalidHandHistory(problems)


class ReplayMachine:
    """Steps through a recorded hand one action at a time.

    The machine owns a single ReplayState. ``start()`` (alias ``reset()``)
    rebuilds it and seeds the blinds, ``step()`` advances by one action or one
    street, and the final step enters showdown and schedules the pot
    settlement on ``scheduler``. Readers get copies through the query methods
    or ``snapshot()``.

    The default scheduler needs a running asyncio loop; without one the
    showdown step raises ``SchedulerUnavailable`` and leaves the state
    untouched. Settlement runs in a single callback, so ``settling`` is never
    visible from outside; snapshots go straight from ``showdown`` to
    ``complete``.
    """

    def __init__(
        self,
        hand: HandHistoryModel,
        replay_id: str | None = None,
        scheduler: Scheduler | None = None,
        settlement_delay: float = 1.5,
        bet_convention: BetConvention = BetConvention.STREET_TOTAL,
    ) -> None:
        self.hand = hand
        self.replay_id = replay_id
        self.scheduler: Scheduler = scheduler or LoopScheduler()
        self.settlement_delay = max(0.0, settlement_delay)
        self.bet_convention = bet_convention
        self.start_warnings: tuple[InsufficientStack, ...] = ()
        self._state = ReplayState()
        self._pending_settlement: ScheduledCall | None = None

    def start(self) -> None:
        self._cancel_pending_settlement()
        validate_hand_history(self.hand)

        state = ReplayState(stacks={player.name: player.starting_stack for player in self.hand.players})
        state.board.extend(self.hand.streets[0].board_cards)
        state.phase = "active"
        self._state = state

        self.start_warnings = self._seed_blinds()
        self._skip_blind_actions()
        logger.debug("Replay %s started with pot %s", self.replay_id, state.pot)

    reset = start

    def step(self) -> StepResult:
        state = self._state
        if state.phase != "active":
            error = IllegalTransition(_REASON_BY_PHASE[state.phase], state.phase)
            logger.info("Rejected step for replay %s: %s", self.replay_id, error.reason)
            return StepResult(outcome="rejected", error=error)

        self._skip_blind_actions()
        actions = self.hand.streets[state.street_index].actions
        if state.action_index < len(actions):
            action = actions[state.action_index]
            state.action_index += 1
            warnings = self._apply_action(action)
            self._skip_blind_actions()
            return StepResult(outcome="action", warnings=warnings)

        if state.street_index + 1 < len(self.hand.streets):
            state.street_index += 1
            state.action_index = 0
            state.current_street_bets.clear()
            state.board.extend(self.hand.streets[state.street_index].board_cards)
            self._skip_blind_actions()
            return StepResult(outcome="street")

        self._enter_showdown()
        return StepResult(outcome="showdown")

    @property
    def phase(self) -> Phase:
        return self._state.phase

    def has_next_action(self) -> bool:
        state = self._state
        if not self.hand.streets:
            return False
        remaining = self.hand.streets[state.street_index].actions[state.action_index :]
        if any(action.kind not in BLIND_KINDS for action in remaining):
            return True
        return state.street_index + 1 < len(self.hand.streets)

    def current_board(self) -> list[str]:
        return list(self._state.board)

    def current_pot(self) -> float:
        return self._state.pot

    def current_stacks(self) -> dict[str, float]:
        return dict(self._state.stacks)

    def is_folded(self, player_name: str) -> bool:
        return player_name in self._state.folded

    def is_complete(self) -> bool:
        return self._state.phase == "complete"

    def action_log(self) -> list[LoggedActionModel]:
        return [entry.model_copy() for entry in self._state.action_log]

    def snapshot(self) -> ReplaySnapshotModel:
        state = self._state
        return ReplaySnapshotModel(
            replay_id=self.replay_id,
            phase=state.phase,
            street_index=state.street_index,
            action_index=state.action_index,
            pot=state.pot,
            stacks=dict(state.stacks),
            current_street_bets=dict(state.current_street_bets),
            folded=list(state.folded),
            board=list(state.board),
            revealed_hands={name: list(cards) for name, cards in state.revealed_hands.items()},
            winners=list(state.winners),
            has_next_action=self.has_next_action(),
            action_log=self.action_log(),
        )

    def cancel(self) -> None:
        """Drop a pending settlement without touching the state."""
        self._cancel_pending_settlement()

    def _seed_blinds(self) -> tuple[InsufficientStack, ...]:
        state = self._state
        warnings: list[InsufficientStack] = []
        seeded: set[ActionKind] = set()
        for action in self.hand.streets[0].actions:
            if action.kind not in BLIND_KINDS or action.kind in seeded:
                continue
            seeded.add(action.kind)
            moved, warning = self._commit_chips(action.player_name, action.amount)
            state.current_street_bets[action.player_name] = action.amount
            self._log_action(action, moved)
            if warning is not None:
                warnings.append(warning)
        return tuple(warnings)

    def _skip_blind_actions(self) -> None:
        state = self._state
        actions = self.hand.streets[state.street_index].actions
        while state.action_index < len(actions) and actions[state.action_index].kind in BLIND_KINDS:
            state.action_index += 1

    def _apply_action(self, action: ActionModel) -> tuple[InsufficientStack, ...]:
        state = self._state
        name = action.player_name

        if action.kind is ActionKind.FOLD:
            if name not in state.folded:
                state.folded.append(name)
            state.current_street_bets[name] = 0
            self._log_action(action, 0)
            return ()

        if action.kind not in CHIP_KINDS:
            self._log_action(action, 0)
            return ()

        if self.bet_convention is BetConvention.STREET_TOTAL:
            owed = max(0.0, action.amount - state.current_street_bets.get(name, 0))
        else:
            owed = action.amount

        moved, warning = self._commit_chips(name, owed)
        state.current_street_bets[name] = action.amount
        self._log_action(action, moved)
        return (warning,) if warning is not None else ()

    def _commit_chips(self, player_name: str, amount: float) -> tuple[float, InsufficientStack | None]:
        state = self._state
        available = state.stacks[player_name]
        paid = max(0.0, amount)
        warning = None
        if paid > available:
            warning = InsufficientStack(player_name, paid, available)
            logger.warning(
                "Replay %s: %s committed %s with %s behind; clamping to stack",
                self.replay_id,
                player_name,
                paid,
                available,
            )
            paid = available
        state.stacks[player_name] = available - paid
        state.pot += paid
        return paid, warning

    def _log_action(self, action: ActionModel, chips_moved: float) -> None:
        self._state.action_log.append(
            LoggedActionModel(
                street_index=self._state.street_index,
                player_name=action.player_name,
                kind=action.kind,
                amount=action.amount,
                chips_moved=chips_moved,
            )
        )

    def _enter_showdown(self) -> None:
        state = self._state

        winners: list[str] = []
        for share in self.hand.pot_outcome.distribution:
            if share.amount > 0 and share.player_name not in winners:
                winners.append(share.player_name)

        revealed: dict[str, list[str]] = {}
        for player in self.hand.players:
            if player.name in state.folded:
                continue
            if player.is_hero:
                cards = player.hole_cards or player.final_cards
            elif player.final_cards:
                cards = player.final_cards
            elif player.name in winners:
                cards = player.hole_cards
            else:
                cards = None
            if cards:
                revealed[player.name] = list(cards)

        # Nothing changes until the settlement is scheduled.
        self._pending_settlement = self.scheduler.call_later(
            self.settlement_delay,
            functools.partial(self._settle, state),
        )
        state.phase = "showdown"
        state.winners = winners
        state.revealed_hands = revealed
        logger.info("Replay %s reached showdown; winners=%s", self.replay_id, winners)

    def _settle(self, state: ReplayState) -> None:
        # A reset swaps in a new state object; never settle a stale one.
        if state is not self._state or state.phase != "showdown":
            return

        self._pending_settlement = None
        state.phase = "settling"
        for share in self.hand.pot_outcome.distribution:
            state.stacks[share.player_name] = state.stacks.get(share.player_name, 0) + share.amount
        state.pot = 0
        state.phase = "complete"
        logger.info("Replay %s settled", self.replay_id)

    def _cancel_pending_settlement(self) -> None:
        if self._pending_settlement is not None:
            self._pending_settlement.cancel()
            self._pending_settlement = None
