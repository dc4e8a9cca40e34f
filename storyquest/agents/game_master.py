from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass

from storyquest.agents.base import Agent
from storyquest.agents.json_schema import JsonSchema
from storyquest.api.models import PlayerState, SessionParameters
from storyquest.contexts import make_game_master_context
from storyquest.core.context import BaseAgentContext, compose_context
from storyquest.prompts import load_prompt

logger = logging.getLogger(__name__)


GAME_UPDATE_SCHEMA = JsonSchema(
    name="game_update",
    schema={
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "player_message": {"type": "string", "description": "message that the player will see"},
            "inventory": {
                "type": "array",
                "items": {"type": "string"},
                "description": "list of items in the player's inventory",
            },
            "player_stats": {
                "type": "array",
                "items": {"type": "integer"},
                "minItems": 3,
                "maxItems": 3,
                "description": "the player's stats (health, energy, gold)",
            },
            "action_options": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": 3,
                "maxItems": 3,
                "description": "list of the player's action options in order",
            },
            "can_rest": {"type": "boolean", "description": "whether the player can rest at the moment"},
            "can_heal": {"type": "boolean", "description": "whether the player can heal at the moment"},
            "generate_image": {"type": "boolean", "description": "whether to generate an image of the game state"},
            "image_prompt": {"type": "string", "description": "prompt to generate the image of the game state"},
            "in_combat": {"type": "boolean", "description": "whether the player is currently in combat"},
            "quest_complete": {"type": "boolean", "description": "whether the player has completed their quest"},
        },
        # Strict structured outputs require every property to be listed.
        "required": [
            "player_message",
            "inventory",
            "player_stats",
            "action_options",
            "can_rest",
            "can_heal",
            "generate_image",
            "image_prompt",
            "in_combat",
            "quest_complete",
        ],
    },
    strict=True,
)


def format_instructions() -> str:
    return load_prompt("format_instructions.txt").strip() + "\n" + json.dumps(GAME_UPDATE_SCHEMA.schema, indent=2)


def build_turn_prompt(*, player_input: str, feedback: str | None = None) -> str:
    parts = ["Respond to the player's input.", format_instructions(), f"PLAYER INPUT:\n{player_input.strip()}"]
    if feedback:
        parts.append(feedback.strip())
    return "\n\n".join(parts)


def accepts_structured_output(propose: Callable[..., object]) -> bool:
    try:
        params = inspect.signature(propose).parameters
    except (TypeError, ValueError):
        return False
    if "structured_output" in params:
        return True
    return any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values())


@dataclass(slots=True)
class AgentModelCollaborator:
    """Model collaborator backed by an LLM agent.

    Owns prompt formatting only: the engine validates whatever comes back.
    """

    agent: Agent
    base: BaseAgentContext | None = None

    async def invoke(
        self,
        *,
        context: SessionParameters,
        state: PlayerState,
        player_input: str,
        feedback: str | None = None,
    ) -> object:
        base = self.base or make_game_master_context()
        ctx = compose_context(base=base, params=context, state=state)
        prompt = build_turn_prompt(player_input=player_input, feedback=feedback)

        propose = getattr(self.agent, "propose_action")
        if accepts_structured_output(propose):
            action = await propose(prompt=prompt, ctx=ctx, structured_output=GAME_UPDATE_SCHEMA)
        else:
            # Agents without structured-output support rely on the prompt's format instructions.
            action = await propose(prompt=prompt, ctx=ctx)

        logger.debug("model returned %d chars (turn=%d)", len(action.content), state.turn_number)
        return action.content
