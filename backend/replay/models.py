from __future__ import annotations

from enum import Enum
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


Phase = Literal["ready", "active", "showdown", "settling", "complete"]
StepOutcome = Literal["action", "street", "showdown", "rejected"]


class ActionKind(str, Enum):
    POST_SMALL_BLIND = "postSmallBlind"
    POST_BIG_BLIND = "postBigBlind"
    FOLD = "fold"
    CHECK = "check"
    CALL = "call"
    BET = "bet"
    RAISE = "raise"


BLIND_KINDS = frozenset({ActionKind.POST_SMALL_BLIND, ActionKind.POST_BIG_BLIND})
CHIP_KINDS = frozenset({ActionKind.CALL, ActionKind.BET, ActionKind.RAISE})

# Verb forms emitted by hand-history parsers ("Villain raises $6").
_KIND_ALIASES: Dict[str, ActionKind] = {
    "folds": ActionKind.FOLD,
    "checks": ActionKind.CHECK,
    "calls": ActionKind.CALL,
    "bets": ActionKind.BET,
    "raises": ActionKind.RAISE,
    "posts small blind": ActionKind.POST_SMALL_BLIND,
    "posts big blind": ActionKind.POST_BIG_BLIND,
    "post_small_blind": ActionKind.POST_SMALL_BLIND,
    "post_big_blind": ActionKind.POST_BIG_BLIND,
    "small_blind": ActionKind.POST_SMALL_BLIND,
    "big_blind": ActionKind.POST_BIG_BLIND,
}


def to_camel(value: str) -> str:
    parts = value.split("_")
    return parts[0] + "".join(part.capitalize() for part in parts[1:])


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(frozen=True)


class PlayerModel(FrozenCamelModel):
    seat: int = Field(gt=0)
    name: str
    is_hero: bool = False
    starting_stack: float = Field(ge=0)
    position: Optional[str] = None
    hole_cards: Optional[Tuple[str, ...]] = None
    final_cards: Optional[Tuple[str, ...]] = None


class ActionModel(FrozenCamelModel):
    player_name: str
    kind: ActionKind
    amount: float = Field(default=0, ge=0)

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: object) -> object:
        if isinstance(value, str):
            raw = value.strip()
            alias = _KIND_ALIASES.get(raw.lower())
            if alias is not None:
                return alias
            for kind in ActionKind:
                if raw.lower() == kind.value.lower():
                    return kind
        return value


class StreetModel(FrozenCamelModel):
    board_cards: Tuple[str, ...] = ()
    actions: Tuple[ActionModel, ...] = ()


class PotShareModel(FrozenCamelModel):
    player_name: str
    amount: float = Field(ge=0)


class PotOutcomeModel(FrozenCamelModel):
    amount: float = Field(default=0, ge=0)
    distribution: Tuple[PotShareModel, ...] = ()


class GameInfoModel(FrozenCamelModel):
    hand_id: Optional[str] = None
    small_blind: Optional[float] = None
    big_blind: Optional[float] = None
    table_size: Optional[int] = None
    dealer_seat: Optional[int] = None


class HandHistoryModel(FrozenCamelModel):
    players: Tuple[PlayerModel, ...]
    streets: Tuple[StreetModel, ...]
    pot_outcome: PotOutcomeModel = Field(default_factory=PotOutcomeModel)
    game_info: Optional[GameInfoModel] = None

    def find_hero(self) -> Optional[PlayerModel]:
        return next((player for player in self.players if player.is_hero), None)


class LoggedActionModel(CamelModel):
    street_index: int
    player_name: str
    kind: ActionKind
    amount: float
    chips_moved: float


class StackWarningModel(CamelModel):
    player_name: str
    requested: float
    available: float


class TransitionErrorModel(CamelModel):
    reason: str
    message: str


class ReplaySnapshotModel(FrozenCamelModel):
    replay_id: Optional[str] = None
    phase: Phase
    street_index: int
    action_index: int
    pot: float
    stacks: Dict[str, float]
    current_street_bets: Dict[str, float]
    folded: List[str]
    board: List[str]
    revealed_hands: Dict[str, List[str]]
    winners: List[str]
    has_next_action: bool
    action_log: List[LoggedActionModel]


class StepResolutionModel(CamelModel):
    outcome: StepOutcome
    snapshot: ReplaySnapshotModel
    warnings: List[StackWarningModel] = Field(default_factory=list)
    error: Optional[TransitionErrorModel] = None


class StoredHandModel(CamelModel):
    hand_id: str
    saved_at: str
    hand: HandHistoryModel


class SaveHandResultModel(CamelModel):
    saved: bool


class HandSummaryModel(CamelModel):
    hand_id: str
    saved_at: str
    small_blind: Optional[float] = None
    big_blind: Optional[float] = None
    final_pot: float
    hero_name: Optional[str] = None
    hero_position: Optional[str] = None
    hero_cards: List[str] = Field(default_factory=list)
    hero_won: bool
