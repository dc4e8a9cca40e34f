from __future__ import annotations

import logging
from dataclasses import dataclass

from storyquest.api.models import (
    ACTION_OPTION_COUNT,
    ENERGY_MAX,
    HEALTH_MAX,
    CandidateUpdate,
    PlayerState,
    SessionStatus,
)
from storyquest.config import DEFAULT_HEALING_KEYWORDS
from storyquest.errors import InvalidTransition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HealingItemCatalog:
    """Decides which inventory entries count as healing items.

    Items are free text chosen by the model ("A small satchel of healing herbs"),
    so matching is a case-insensitive keyword lookup.
    """

    keywords: tuple[str, ...] = DEFAULT_HEALING_KEYWORDS

    def is_healing_item(self, item: str) -> bool:
        name = item.casefold()
        return any(k.casefold() in name for k in self.keywords if k)

    def has_healing_item(self, inventory: list[str]) -> bool:
        return any(self.is_healing_item(i) for i in inventory)


def _clamp(value: int, lo: int, hi: int | None) -> int:
    value = max(lo, value)
    if hi is not None:
        value = min(hi, value)
    return value


def initial_player_state() -> PlayerState:
    return PlayerState()


class PlayerStateStore:
    """Owns the canonical PlayerState for one session.

    All mutation goes through `apply` / `reset`. Readers get deep copies.
    """

    def __init__(
        self,
        *,
        healing_items: HealingItemCatalog | None = None,
        clamp_stats: bool = False,
        state: PlayerState | None = None,
    ) -> None:
        self._healing_items = healing_items or HealingItemCatalog()
        self._clamp_stats = clamp_stats
        self._state = state.model_copy(deep=True) if state is not None else initial_player_state()

    @property
    def healing_items(self) -> HealingItemCatalog:
        return self._healing_items

    def current(self) -> PlayerState:
        return self._state.model_copy(deep=True)

    def _check_bounds(self, update: CandidateUpdate) -> None:
        out_of_range: list[str] = []
        if not 0 <= update.health <= HEALTH_MAX:
            out_of_range.append(f"health={update.health}")
        if not 0 <= update.energy <= ENERGY_MAX:
            out_of_range.append(f"energy={update.energy}")
        if update.gold < 0:
            out_of_range.append(f"gold={update.gold}")
        if out_of_range:
            raise InvalidTransition(f"Stats out of bounds: {', '.join(out_of_range)}")

    def apply(self, update: CandidateUpdate) -> PlayerState:
        """Apply a validated candidate as a diff-checked replacement.

        Either every field changes and turn_number advances by one, or the stored
        state is left untouched and InvalidTransition is raised.
        """

        prev = self._state
        if prev.status != SessionStatus.active:
            raise InvalidTransition(f"Session is not active (status={prev.status.value})")

        if not self._clamp_stats:
            self._check_bounds(update)

        health = _clamp(update.health, 0, HEALTH_MAX)
        energy = _clamp(update.energy, 0, ENERGY_MAX)
        gold = _clamp(update.gold, 0, None)

        if health <= 0:
            status = SessionStatus.lost
        elif update.quest_complete:
            status = SessionStatus.won
        else:
            status = SessionStatus.active

        options = list(update.action_options)
        if status == SessionStatus.active and len(options) != ACTION_OPTION_COUNT:
            raise InvalidTransition(f"Expected exactly {ACTION_OPTION_COUNT} action options, got {len(options)}")
        if status != SessionStatus.active:
            options = []

        inventory = list(update.inventory)
        active = status == SessionStatus.active

        nxt = PlayerState(
            health=health,
            energy=energy,
            gold=gold,
            inventory=inventory,
            action_options=options,
            can_rest=active and not update.in_combat,
            can_heal=active and health < HEALTH_MAX and self._healing_items.has_healing_item(inventory),
            turn_number=prev.turn_number + 1,
            status=status,
            player_message=update.player_message,
            image_prompt=update.image_prompt if update.generate_image else None,
        )

        # Single swap: nothing above touched the stored state.
        self._state = nxt
        logger.debug(
            "state applied: turn=%d status=%s stats=%s inventory=%d",
            nxt.turn_number,
            nxt.status.value,
            nxt.stats,
            len(nxt.inventory),
        )
        return nxt.model_copy(deep=True)

    def reset(self) -> PlayerState:
        if self._state.status == SessionStatus.active:
            raise InvalidTransition("Cannot reset an active session")
        self._state = initial_player_state()
        return self.current()
