from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from storyquest.agents.json_schema import JsonSchema
from storyquest.api.models import PlayerState, SessionParameters
from storyquest.core.context import RenderedContext


@dataclass(frozen=True, slots=True)
class AgentAction:
    kind: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class Agent(Protocol):
    name: str

    async def propose_action(
        self, *, prompt: str, ctx: RenderedContext, structured_output: JsonSchema | None = None
    ) -> AgentAction:  # pragma: no cover
        ...


class ModelCollaborator(Protocol):
    """Produces the raw next-state payload (JSON text or dict) for a turn."""

    async def invoke(
        self,
        *,
        context: SessionParameters,
        state: PlayerState,
        player_input: str,
        feedback: str | None = None,
    ) -> object:  # pragma: no cover
        ...


class ImageCollaborator(Protocol):
    """Fire-and-forget image generation. Returns an opaque handle (e.g. a URL)."""

    async def request_image(self, prompt: str) -> str:  # pragma: no cover
        ...
