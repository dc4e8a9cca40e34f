from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from autogen import ConversableAgent, LLMConfig

from storyquest.agents.autogen_config import llm_config_from_env
from storyquest.agents.base import AgentAction
from storyquest.agents.json_schema import JsonSchema
from storyquest.core.context import RenderedContext


def _extract_last_content(messages: object) -> str:
    """Extract the last message content from AG2 chat history."""

    if not isinstance(messages, list):
        return ""

    for msg in reversed(messages):
        if isinstance(msg, dict):
            content = msg.get("content")
            if isinstance(content, str) and content.strip():
                return content.strip()
    return ""


@dataclass(slots=True)
class Ag2ChatAgent:
    """Game-master LLM wrapper using the documented `autogen` API.

    Context stacking is done by our code (RenderedContext); transport and model
    config are handled by AG2.

    Environment variables supported:
    - OPENAI_MODEL
    - OPENAI_API_KEY (optional if OPENAI_BASE_URL is set)
    - OPENAI_BASE_URL (for OpenAI-compatible servers like Ollama, e.g. http://127.0.0.1:11434/v1)
    """

    name: str
    model: str
    llm_config: LLMConfig | None = None

    def _run_blocking(self, *, prompt: str, ctx: RenderedContext, extra: dict[str, Any]) -> str:
        llm_config = self.llm_config or llm_config_from_env(default_model=self.model)

        agent = ConversableAgent(
            name=self.name,
            system_message=ctx.system_prompt,
            llm_config=llm_config,
            human_input_mode="NEVER",
        )

        result = agent.run(message=prompt, max_turns=1, **extra)
        result.process()

        text = _extract_last_content(list(result.messages))
        if not text:
            summary = result.summary
            if isinstance(summary, str):
                text = summary.strip()
        return text

    async def propose_action(
        self,
        *,
        prompt: str,
        ctx: RenderedContext,
        structured_output: JsonSchema | None = None,
    ) -> AgentAction:
        """Send a prompt using the stacked system context.

        If structured_output is provided, request OpenAI-style structured JSON output.
        """

        # OpenAI-style structured outputs: AG2 forwards unknown kwargs to the OpenAI client.
        extra: dict[str, Any] = {}
        if structured_output is not None:
            extra["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": structured_output.name,
                    "schema": structured_output.schema,
                    "strict": structured_output.strict,
                },
            }

        # AG2's run loop is synchronous; keep it off the event loop so the turn timeout can fire.
        text = await asyncio.to_thread(self._run_blocking, prompt=prompt, ctx=ctx, extra=extra)

        return AgentAction(
            kind="chat",
            content=text,
            metadata={"model": self.model, **({"structured": True} if structured_output else {})},
        )
