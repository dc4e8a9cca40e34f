from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

from storyquest.api.models import SessionParameters
from storyquest.errors import InvalidParameters


def _norm_key(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip().casefold()


@dataclass(frozen=True, slots=True)
class Category:
    name: str
    options: tuple[str, ...]
    # Story categories shape the narrative; style categories only shape images.
    kind: str = "story"


STORY_CATEGORIES: tuple[Category, ...] = (
    Category(
        "History",
        (
            "A young and curious adventurer",
            "A skilled mage with a troubled past",
            "A cunning thief seeking redemption",
            "An honorable knight on a quest",
            "A wise and ancient forest spirit",
            "A lost traveler from another realm",
        ),
    ),
    Category(
        "Trait",
        (
            "Strength: Allows the character to overcome physical obstacles or engage in combat",
            "Intelligence: Helps the character solve puzzles and decipher complex riddles",
            "Agility: Enables the character to navigate treacherous terrain or evade danger",
            "Charm: Allows the character to persuade or manipulate NPCs",
            "Perception: Helps the character notice hidden clues or detect hidden dangers",
            "Magic: Grants the character access to powerful spells and abilities",
        ),
    ),
    Category(
        "Location",
        (
            "An ancient temple hidden deep within the forest",
            "A mystical village populated by magical creatures",
            "A dark and treacherous swamp filled with dangerous creatures",
            "A towering waterfall cascading into a hidden cavern",
            "A forgotten library guarded by enchanted books",
            "A mystical garden blooming with rare and powerful herbs",
        ),
    ),
    Category(
        "Goal",
        (
            "Find a way to break a powerful curse",
            "Uncover the truth behind a mysterious prophecy",
            "Retrieve a stolen artifact of immense power",
            "Restore balance to the enchanted forest",
            "Discover the source of a spreading corruption",
            "Save a captured loved one from an evil sorcerer",
        ),
    ),
    Category(
        "Item",
        (
            "A rusty key with an unknown purpose",
            "A worn-out map with cryptic symbols",
            "A magical pendant that glows faintly",
            "A small satchel of healing herbs and potions",
            "A mysterious letter with a hidden message",
            "A silver dagger with intricate engravings",
        ),
    ),
)

STYLE_CATEGORIES: tuple[Category, ...] = (
    Category("Style", ("Fantasy", "Medieval", "Sci-Fi", "Nature", "Urban"), kind="style"),
    Category("Color", ("Red", "Orange", "Yellow", "Green", "Blue", "Purple"), kind="style"),
    Category("Shape", ("Circle", "Square", "Triangle", "Diamond", "Rectangle", "Hexagon"), kind="style"),
    Category("Character", ("King", "Queen", "Fairy", "Zombie", "Unicorn", "Dragon"), kind="style"),
    Category("Background", ("Sunset", "Mountains", "Ocean", "Cityscape", "Galaxy", "Beach"), kind="style"),
)

ALL_CATEGORIES: tuple[Category, ...] = STORY_CATEGORIES + STYLE_CATEGORIES

_BY_KEY: dict[str, Category] = {_norm_key(c.name): c for c in ALL_CATEGORIES}


def resolve_category(name: str) -> Category | None:
    return _BY_KEY.get(_norm_key(name))


def catalog_as_dict() -> dict[str, dict[str, object]]:
    return {c.name: {"kind": c.kind, "options": list(c.options)} for c in ALL_CATEGORIES}


def freeze_parameters(selections: Mapping[str, str | None]) -> SessionParameters:
    """Validate the player's category choices and freeze them for the session.

    Every known category must have a non-empty selection. Category names are
    matched case-insensitively and stored under their canonical name. Selections
    are free text: the catalog options are suggestions, not a closed set.
    """

    canonical: dict[str, str] = {}
    for raw_name, value in selections.items():
        cat = resolve_category(raw_name)
        if cat is None:
            raise InvalidParameters(f'Unknown category "{raw_name}"')
        if value is None or not str(value).strip():
            raise InvalidParameters(f'Category "{cat.name}" has no selected option.')
        canonical[cat.name] = str(value).strip()

    missing = [c.name for c in ALL_CATEGORIES if c.name not in canonical]
    if missing:
        raise InvalidParameters(f'Category "{missing[0]}" has no selected option.')

    ordered = {c.name: canonical[c.name] for c in ALL_CATEGORIES}
    return SessionParameters(selections=ordered)


def story_selections(params: SessionParameters) -> list[tuple[str, str]]:
    return [(c.name, params.selections[c.name]) for c in STORY_CATEGORIES if c.name in params.selections]


def style_selections(params: SessionParameters) -> list[tuple[str, str]]:
    return [(c.name, params.selections[c.name]) for c in STYLE_CATEGORIES if c.name in params.selections]
