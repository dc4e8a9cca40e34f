from __future__ import annotations

from storyquest.core.context import BaseAgentContext
from storyquest.prompts import load_prompt


def make_game_master_context(*, system_prefix: str = "") -> BaseAgentContext:
    """Construct the shared game-master context.

    The shared context includes the game rules from prompts/game_master.txt.
    You can optionally prepend extra system-level instructions via system_prefix.
    """

    rules = load_prompt("game_master.txt")
    parts: list[str] = []
    if system_prefix.strip():
        parts.append(system_prefix.strip())
    parts.append(rules.strip())

    return BaseAgentContext(system_prompt="\n\n".join(parts).strip())
