from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum

DEFAULT_HEALING_KEYWORDS: tuple[str, ...] = (
    "potion",
    "herb",
    "elixir",
    "salve",
    "bandage",
    "healing",
    "remedy",
    "tonic",
)


class RepairStrategy(StrEnum):
    reask = "reask"
    clamp = "clamp"
    none = "none"


@dataclass(frozen=True, slots=True)
class EngineConfig:
    # Upper bound on a single model call, in seconds.
    model_timeout_s: float = 30.0
    repair_strategy: RepairStrategy = RepairStrategy.reask
    # When set, the store clamps out-of-range stats instead of rejecting the update.
    clamp_stats: bool = False
    healing_keywords: tuple[str, ...] = DEFAULT_HEALING_KEYWORDS


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().casefold() in {"1", "true", "yes", "on"}


def engine_config_from_env() -> EngineConfig:
    raw_timeout = os.environ.get("STORYQUEST_MODEL_TIMEOUT_S", "30")
    try:
        timeout = float(raw_timeout)
    except ValueError as e:
        raise RuntimeError(f"STORYQUEST_MODEL_TIMEOUT_S must be a number, got {raw_timeout!r}") from e
    if timeout <= 0:
        raise RuntimeError("STORYQUEST_MODEL_TIMEOUT_S must be positive")

    raw_strategy = os.environ.get("STORYQUEST_REPAIR_STRATEGY", RepairStrategy.reask.value)
    try:
        strategy = RepairStrategy(raw_strategy.strip().casefold())
    except ValueError as e:
        allowed = ",".join(s.value for s in RepairStrategy)
        raise RuntimeError(f"STORYQUEST_REPAIR_STRATEGY must be one of: {allowed}") from e

    raw_keywords = os.environ.get("STORYQUEST_HEALING_KEYWORDS")
    keywords = DEFAULT_HEALING_KEYWORDS
    if raw_keywords:
        keywords = tuple(k.strip() for k in raw_keywords.split(",") if k.strip())

    return EngineConfig(
        model_timeout_s=timeout,
        repair_strategy=strategy,
        clamp_stats=_env_flag("STORYQUEST_CLAMP_STATS"),
        healing_keywords=keywords,
    )
