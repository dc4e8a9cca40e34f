from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from storyquest.api.models import (
    ACTION_OPTION_COUNT,
    ENERGY_MAX,
    HEALTH_MAX,
    ActionKind,
    CandidateUpdate,
    PlayerState,
)
from storyquest.errors import CandidateValidationError, FieldIssue, GateViolation, InvalidTransition

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

_STAT_NAMES = ("health", "energy", "gold")


def _loc_to_field(loc: tuple[Any, ...]) -> str:
    if not loc:
        return "$"
    head = str(loc[0])
    if head == "player_stats" and len(loc) > 1 and isinstance(loc[1], int) and loc[1] < len(_STAT_NAMES):
        return f"player_stats[{_STAT_NAMES[loc[1]]}]"
    parts = [head]
    for p in loc[1:]:
        parts.append(f"[{p}]" if isinstance(p, int) else f".{p}")
    return "".join(parts)


def extract_json_text(text: str) -> str:
    """Return the JSON document inside `text`.

    Structured-output parsers commonly wrap the object in a ```json fenced block;
    we accept either the bare object or the first fenced block.
    """

    m = _FENCED_JSON.search(text)
    if m:
        return m.group(1).strip()
    return text.strip()


def decode_payload(payload: object) -> dict[str, Any]:
    """Decode a raw model payload into a JSON object (dict) or raise."""

    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        try:
            payload = json.loads(extract_json_text(payload))
        except json.JSONDecodeError as e:
            raise CandidateValidationError([FieldIssue("$", f"invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})")]) from e

    if not isinstance(payload, Mapping):
        raise CandidateValidationError([FieldIssue("$", f"expected a JSON object, got {type(payload).__name__}")])

    return dict(payload)


def _is_terminal_candidate(data: Mapping[str, Any]) -> bool:
    if data.get("quest_complete") is True:
        return True
    stats = data.get("player_stats")
    if isinstance(stats, (list, tuple)) and stats and isinstance(stats[0], (int, float)) and not isinstance(stats[0], bool):
        return stats[0] <= 0
    return False


def _semantic_issues(data: Mapping[str, Any]) -> list[FieldIssue]:
    """Range and count constraints that the plain type schema can't express."""

    issues: list[FieldIssue] = []

    stats = data.get("player_stats")
    if isinstance(stats, (list, tuple)) and len(stats) == len(_STAT_NAMES):
        bounds = ((0, HEALTH_MAX), (0, ENERGY_MAX), (0, None))
        for name, value, (lo, hi) in zip(_STAT_NAMES, stats, bounds):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            if value < lo:
                issues.append(FieldIssue(f"player_stats[{name}]", f"must be >= {lo}, got {value}"))
            elif hi is not None and value > hi:
                issues.append(FieldIssue(f"player_stats[{name}]", f"must be <= {hi}, got {value}"))

    options = data.get("action_options")
    if isinstance(options, list):
        if len(options) != ACTION_OPTION_COUNT and not _is_terminal_candidate(data):
            issues.append(
                FieldIssue("action_options", f"must contain exactly {ACTION_OPTION_COUNT} options, got {len(options)}")
            )
        for idx, opt in enumerate(options):
            if isinstance(opt, str) and not opt.strip():
                issues.append(FieldIssue(f"action_options[{idx}]", "must not be blank"))

    return issues


def validate_candidate(payload: object) -> CandidateUpdate:
    """Validate an untrusted model payload against the state-update contract.

    Pure: no I/O, no side effects. Raises CandidateValidationError listing every
    violated field.
    """

    data = decode_payload(payload)

    issues: list[FieldIssue] = []
    candidate: CandidateUpdate | None = None
    try:
        candidate = CandidateUpdate.model_validate(data)
    except ValidationError as e:
        for err in e.errors():
            issues.append(FieldIssue(_loc_to_field(tuple(err.get("loc", ()))), str(err.get("msg", "invalid"))))

    # Range checks must see the coerced values ("500" -> 500), not the raw JSON.
    checked = candidate.model_dump(mode="json") if candidate is not None else data
    seen = {(i.field, i.reason) for i in issues}
    for issue in _semantic_issues(checked):
        if (issue.field, issue.reason) not in seen:
            issues.append(issue)

    if issues or candidate is None:
        raise CandidateValidationError(issues)
    return candidate


# --- gate checks (run before the model is called) -----------------------------------------


@dataclass(frozen=True, slots=True)
class ValidationContext:
    """Inputs available to gate validators.

    Keep this tight and serializable-ish so we can safely log it.
    """

    session_id: str
    action: ActionKind
    text: str


class TurnValidator(ABC):
    """A small, composable validation unit for an incoming action."""

    @abstractmethod
    def validate(self, *, ctx: ValidationContext, state: PlayerState) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class TerminalSessionValidator(TurnValidator):
    """Deny every action once the session has been won or lost."""

    def validate(self, *, ctx: ValidationContext, state: PlayerState) -> None:
        if state.is_terminal:
            raise InvalidTransition(f"Session is over (status={state.status.value})")


@dataclass(frozen=True, slots=True)
class EnergyGateValidator(TurnValidator):
    """With no energy left, only rest actions are accepted."""

    def validate(self, *, ctx: ValidationContext, state: PlayerState) -> None:
        if state.energy <= 0 and ctx.action != ActionKind.rest:
            raise GateViolation("Out of energy: rest before taking another action")


@dataclass(frozen=True, slots=True)
class RestGateValidator(TurnValidator):
    def validate(self, *, ctx: ValidationContext, state: PlayerState) -> None:
        if not state.can_rest:
            raise GateViolation("Cannot rest right now")


@dataclass(frozen=True, slots=True)
class HealGateValidator(TurnValidator):
    def validate(self, *, ctx: ValidationContext, state: PlayerState) -> None:
        if not state.can_heal:
            raise GateViolation("Cannot heal right now")


@dataclass(frozen=True, slots=True)
class ValidatorPipeline:
    validators: tuple[TurnValidator, ...]

    def validate(self, *, ctx: ValidationContext, state: PlayerState) -> None:
        for v in self.validators:
            v.validate(ctx=ctx, state=state)


DEFAULT_ACTION_PIPELINES: dict[ActionKind, ValidatorPipeline] = {
    ActionKind.act: ValidatorPipeline(
        validators=(
            TerminalSessionValidator(),
            EnergyGateValidator(),
        )
    ),
    ActionKind.rest: ValidatorPipeline(
        validators=(
            TerminalSessionValidator(),
            RestGateValidator(),
        )
    ),
    ActionKind.heal: ValidatorPipeline(
        validators=(
            TerminalSessionValidator(),
            EnergyGateValidator(),
            HealGateValidator(),
        )
    ),
}


def pipeline_for_action(action: ActionKind | str) -> ValidatorPipeline:
    try:
        kind = ActionKind(action)
    except ValueError as e:
        raise ValueError(f"Unknown action: {action}") from e
    return DEFAULT_ACTION_PIPELINES[kind]
