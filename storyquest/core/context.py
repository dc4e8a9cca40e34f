from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from storyquest.api.models import PlayerState, SessionParameters
from storyquest.catalog import story_selections, style_selections


@dataclass(frozen=True, slots=True)
class BaseAgentContext:
    """Global game-master instructions shared by every session."""

    system_prompt: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RenderedContext:
    """Final, merged context passed into the LLM agent."""

    system_prompt: str

    def as_messages(self) -> list[dict[str, str]]:
        return [{"role": "system", "content": self.system_prompt}]


def render_parameters(params: SessionParameters) -> str:
    lines = ["STORY PARAMETERS (chosen by the player, fixed for this session):"]
    lines.extend(f"- {name}: {value}" for name, value in story_selections(params))

    style = style_selections(params)
    if style:
        lines.append("IMAGE STYLE (use only for image_prompt):")
        lines.extend(f"- {name}: {value}" for name, value in style)
    return "\n".join(lines)


def render_state(state: PlayerState) -> str:
    inventory = ", ".join(state.inventory) if state.inventory else "(empty)"
    return "\n".join(
        [
            "CURRENT PLAYER STATE:",
            f"- turn: {state.turn_number}",
            f"- health: {state.health}",
            f"- energy: {state.energy}",
            f"- gold: {state.gold}",
            f"- inventory: {inventory}",
        ]
    )


def compose_context(*, base: BaseAgentContext, params: SessionParameters, state: PlayerState) -> RenderedContext:
    parts: list[str] = [base.system_prompt.strip(), render_parameters(params), render_state(state)]
    system_prompt = "\n\n".join([p for p in parts if p.strip()]).strip()
    return RenderedContext(system_prompt=system_prompt)
