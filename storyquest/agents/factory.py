from __future__ import annotations

import os
from pathlib import Path
from typing import cast

from storyquest.agents.ag2_backend import Ag2ChatAgent
from storyquest.agents.autogen_config import DEFAULT_CHAT_MODEL, image_model_from_env, llm_config_from_oai_config_list
from storyquest.agents.base import Agent, ImageCollaborator, ModelCollaborator
from storyquest.agents.game_master import AgentModelCollaborator
from storyquest.agents.images import LoggingImageCollaborator, OpenAIImageCollaborator


def create_default_agent(*, name: str = "game-master") -> Agent:
    """Create the default LLM-backed agent.

    Uses AG2/autogen. Model configuration comes from env, or from an
    OAI_CONFIG_LIST file when STORYQUEST_OAI_CONFIG_LIST points at one.
    """

    model = os.environ.get("OPENAI_MODEL", DEFAULT_CHAT_MODEL)
    config_list = os.environ.get("STORYQUEST_OAI_CONFIG_LIST")
    llm_config = llm_config_from_oai_config_list(Path(config_list)) if config_list else None
    return cast(Agent, Ag2ChatAgent(name=name, model=model, llm_config=llm_config))


def create_model_collaborator() -> ModelCollaborator:
    return AgentModelCollaborator(agent=create_default_agent())


def create_image_collaborator() -> ImageCollaborator:
    """`STORYQUEST_IMAGES=openai` enables real image generation; default only logs prompts."""

    backend = os.environ.get("STORYQUEST_IMAGES", "log").strip().casefold()
    if backend == "openai":
        return OpenAIImageCollaborator(model=image_model_from_env())
    if backend == "log":
        return LoggingImageCollaborator()
    raise RuntimeError(f"Unknown STORYQUEST_IMAGES backend: {backend}")
