from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

HEALTH_MAX = 100
ENERGY_MAX = 100
ACTION_OPTION_COUNT = 3


class SessionStatus(StrEnum):
    active = "active"
    won = "won"
    lost = "lost"


class ActionKind(StrEnum):
    act = "act"
    rest = "rest"
    heal = "heal"


class PlayerState(BaseModel):
    """Authoritative session snapshot. Only the state store mutates it."""

    health: int = Field(default=HEALTH_MAX, ge=0, le=HEALTH_MAX)
    energy: int = Field(default=ENERGY_MAX, ge=0, le=ENERGY_MAX)
    gold: int = Field(default=0, ge=0)

    # Insertion order is display order.
    inventory: list[str] = Field(default_factory=list)

    # Exactly three while active; empty once the session is over.
    action_options: list[str] = Field(default_factory=list)

    # Derived by the store on every apply.
    can_rest: bool = True
    can_heal: bool = False

    turn_number: int = 0
    status: SessionStatus = SessionStatus.active

    # Last narrative shown to the player and the last image prompt, for display only.
    player_message: str = ""
    image_prompt: str | None = None

    @property
    def stats(self) -> tuple[int, int, int]:
        return (self.health, self.energy, self.gold)

    @property
    def is_terminal(self) -> bool:
        return self.status != SessionStatus.active


class CandidateUpdate(BaseModel):
    """Untrusted next-state proposal from the model.

    Field names follow the JSON contract the model is asked to produce.
    `turn_number` / `status` are intentionally absent and extra keys are rejected,
    so a candidate can never set them.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    player_message: str = Field(..., description="message that the player will see")
    inventory: list[str] = Field(..., description="list of items in the player's inventory")
    player_stats: tuple[int, int, int] = Field(..., description="the player's stats (health, energy, gold)")
    action_options: list[str] = Field(..., description="list of the player's action options in order")
    can_rest: bool = Field(..., description="whether the player can rest at the moment")
    can_heal: bool = Field(..., description="whether the player can heal at the moment")
    generate_image: bool = Field(..., description="whether to generate an image of the game state")
    image_prompt: str = Field(..., description="prompt to generate the image of the game state")
    in_combat: bool = Field(default=False, description="whether the player is currently in combat")
    quest_complete: bool = Field(default=False, description="whether the player has completed their quest")

    @property
    def health(self) -> int:
        return self.player_stats[0]

    @property
    def energy(self) -> int:
        return self.player_stats[1]

    @property
    def gold(self) -> int:
        return self.player_stats[2]


class SessionParameters(BaseModel):
    """Frozen category selections (category name -> selected option).

    `selections` is a read-only mapping, so the choices can't change mid-session.
    """

    model_config = ConfigDict(frozen=True)

    selections: Mapping[str, str] = Field(default_factory=dict, validate_default=True)

    @field_validator("selections", mode="after")
    @classmethod
    def _read_only(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(v))

    @field_serializer("selections")
    def _as_dict(self, v: Mapping[str, str]) -> dict[str, str]:
        return dict(v)

    def get(self, category: str) -> str | None:
        return self.selections.get(category)


class SessionCreateRequest(BaseModel):
    parameters: dict[str, str] = Field(default_factory=dict)


class ActionRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)
    kind: ActionKind | None = None


class TurnEventModel(BaseModel):
    """UI-facing per-turn payload."""

    session_id: str
    turn_number: int
    player_message: str
    inventory: list[str]
    stats: tuple[int, int, int]
    action_options: list[str]
    can_rest: bool
    can_heal: bool
    status: SessionStatus
    image_requested: bool = False


class SessionView(BaseModel):
    session_id: UUID
    created_at: datetime
    last_updated_at: datetime
    parameters: SessionParameters
    state: PlayerState
    phase: str
    closed: bool = False


class SessionListResponse(BaseModel):
    sessions: list[SessionView]


class TurnResponse(BaseModel):
    session: SessionView
    event: TurnEventModel
    outcome: str
