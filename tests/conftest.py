from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from storyquest.api.models import PlayerState, SessionParameters
from storyquest.catalog import ALL_CATEGORIES


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    This makes OPENAI_BASE_URL / OPENAI_MODEL available to the env-gated
    integration tests without exporting them in your shell.

    In CI, we *don't* auto-load `.env`, so integration tests that require a live
    model endpoint stay skipped unless explicitly opted-in with
    STORYQUEST_LOAD_DOTENV_FOR_TESTS=1.
    """

    if os.environ.get("CI") and os.environ.get("STORYQUEST_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)

    # If using a local OpenAI-compatible endpoint, some clients require a key string.
    if os.environ.get("OPENAI_BASE_URL") and not os.environ.get("OPENAI_API_KEY"):
        os.environ["OPENAI_API_KEY"] = "ollama"


@dataclass
class ScriptedModel:
    """Model collaborator stub: replays queued payloads and records every call.

    A queued exception is raised instead of returned.
    """

    responses: list[object] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)
    delay_s: float = 0.0

    async def invoke(
        self,
        *,
        context: SessionParameters,
        state: PlayerState,
        player_input: str,
        feedback: str | None = None,
    ) -> object:
        self.calls.append({"context": context, "state": state, "player_input": player_input, "feedback": feedback})
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if not self.responses:
            raise RuntimeError("no scripted response left")
        nxt = self.responses.pop(0)
        if isinstance(nxt, BaseException):
            raise nxt
        return nxt


def _make_update(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "player_message": "You slip into the temple, dagger in hand.",
        "inventory": ["dagger"],
        "player_stats": [100, 90, 10],
        "action_options": ["Light a torch", "Search the altar", "Call out"],
        "can_rest": False,
        "can_heal": False,
        "generate_image": False,
        "image_prompt": "",
        "in_combat": True,
        "quest_complete": False,
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def make_update() -> Callable[..., dict[str, Any]]:
    return _make_update


@pytest.fixture()
def model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture()
def selections() -> dict[str, str]:
    return {c.name: c.options[0] for c in ALL_CATEGORIES}


@pytest.fixture()
def params(selections: dict[str, str]) -> SessionParameters:
    from storyquest.catalog import freeze_parameters

    return freeze_parameters(selections)


@pytest.fixture()
def client_and_redis(model: ScriptedModel):
    """FastAPI TestClient wired to fakeredis, a scripted model, and a logging image backend."""

    import fakeredis
    from fastapi.testclient import TestClient

    from storyquest.agents.images import LoggingImageCollaborator
    from storyquest.api.deps import (
        get_engine_config,
        get_image_collaborator,
        get_model_collaborator,
        get_redis,
        get_registry,
    )
    from storyquest.config import EngineConfig
    from storyquest.main import app
    from storyquest.sessions import SessionRegistry
    from storyquest.websocket_hub import hub

    r = fakeredis.FakeRedis(decode_responses=True)
    registry = SessionRegistry()
    registry.add_listener(hub.on_turn_event)
    image = LoggingImageCollaborator()

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_model_collaborator] = lambda: model
    app.dependency_overrides[get_image_collaborator] = lambda: image
    app.dependency_overrides[get_engine_config] = lambda: EngineConfig(model_timeout_s=2.0)
    with TestClient(app) as c:
        yield c, r
    registry.clear()
    app.dependency_overrides.clear()
