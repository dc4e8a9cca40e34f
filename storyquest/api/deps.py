from __future__ import annotations

from collections.abc import Generator

import redis

from storyquest.agents.base import ImageCollaborator, ModelCollaborator
from storyquest.agents.factory import create_image_collaborator, create_model_collaborator
from storyquest.config import EngineConfig, engine_config_from_env
from storyquest.infra.redis_client import create_redis
from storyquest.sessions import SessionRegistry
from storyquest.websocket_hub import hub

_registry = SessionRegistry()
_registry.add_listener(hub.on_turn_event)

_model: ModelCollaborator | None = None
_image: ImageCollaborator | None = None


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


def get_registry() -> SessionRegistry:
    return _registry


def get_engine_config() -> EngineConfig:
    return engine_config_from_env()


def get_model_collaborator() -> ModelCollaborator:
    global _model
    if _model is None:
        _model = create_model_collaborator()
    return _model


def get_image_collaborator() -> ImageCollaborator:
    global _image
    if _image is None:
        _image = create_image_collaborator()
    return _image
