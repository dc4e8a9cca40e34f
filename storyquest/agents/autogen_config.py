from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from autogen import LLMConfig

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_IMAGE_MODEL = "dall-e-3"


@dataclass(frozen=True, slots=True)
class OpenAICompatibleSettings:
    model: str
    base_url: str | None
    api_key: str | None


def settings_from_env(*, default_model: str = DEFAULT_CHAT_MODEL) -> OpenAICompatibleSettings:
    return OpenAICompatibleSettings(
        model=os.environ.get("OPENAI_MODEL", default_model),
        # For Ollama, typically http://127.0.0.1:11434/v1
        base_url=os.environ.get("OPENAI_BASE_URL"),
        api_key=os.environ.get("OPENAI_API_KEY"),
    )


def resolve_api_key(s: OpenAICompatibleSettings) -> str:
    # Local OpenAI-compatible servers ignore the key, but the SDK insists on one.
    api_key = s.api_key or ("ollama" if s.base_url else None)
    if not api_key:
        raise RuntimeError(
            "Set OPENAI_API_KEY for hosted OpenAI, or set OPENAI_BASE_URL for a local OpenAI-compatible server"
        )
    return api_key


def llm_config_from_env(*, default_model: str = DEFAULT_CHAT_MODEL, temperature: float | None = None) -> LLMConfig:
    s = settings_from_env(default_model=default_model)

    config: dict[str, Any] = {"model": s.model, "api_key": resolve_api_key(s)}
    if s.base_url:
        config["base_url"] = s.base_url

    if temperature is not None:
        return LLMConfig(config_list=[config], temperature=temperature)
    return LLMConfig(config_list=[config])


def llm_config_from_oai_config_list(path: Path) -> LLMConfig:
    # Matches AG2 docs: LLMConfig.from_json(path="OAI_CONFIG_LIST")
    return LLMConfig.from_json(path=str(path))


def image_model_from_env() -> str:
    return os.environ.get("STORYQUEST_IMAGE_MODEL", DEFAULT_IMAGE_MODEL)
