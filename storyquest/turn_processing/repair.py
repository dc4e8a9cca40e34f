from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from storyquest.api.models import ACTION_OPTION_COUNT, ENERGY_MAX, HEALTH_MAX, CandidateUpdate
from storyquest.config import RepairStrategy
from storyquest.errors import CandidateValidationError, FieldIssue
from storyquest.turn_processing.validators import decode_payload, validate_candidate

logger = logging.getLogger(__name__)

# Re-asks the upstream model once, given the issues from the first attempt.
Reasker = Callable[[list[FieldIssue]], Awaitable[object]]


def format_feedback(issues: list[FieldIssue]) -> str:
    """Render validation issues as feedback text for a corrective model call."""

    lines = ["Your previous response did not match the required JSON format.", "Problems found:"]
    lines.extend(f"- {i.field}: {i.reason}" for i in issues)
    lines.append("Return the full corrected JSON object only.")
    return "\n".join(lines)


def _clamp_int(value: Any, lo: int, hi: int | None) -> Any:
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return value
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return value
    out = int(round(value))
    out = max(lo, out)
    if hi is not None:
        out = min(hi, out)
    return out


def clamp_payload(data: dict[str, Any]) -> dict[str, Any]:
    """Coerce trivially fixable values.

    - numeric stats (or numeric strings) are rounded and clamped into their declared bounds
    - surplus action options are dropped

    Missing fields are never invented.
    """

    fixed = dict(data)

    stats = fixed.get("player_stats")
    if isinstance(stats, (list, tuple)) and len(stats) == 3:
        health, energy, gold = stats
        fixed["player_stats"] = [
            _clamp_int(health, 0, HEALTH_MAX),
            _clamp_int(energy, 0, ENERGY_MAX),
            _clamp_int(gold, 0, None),
        ]

    options = fixed.get("action_options")
    if isinstance(options, list) and len(options) > ACTION_OPTION_COUNT:
        fixed["action_options"] = options[:ACTION_OPTION_COUNT]

    return fixed


@dataclass(frozen=True, slots=True)
class RepairHook:
    """One bounded corrective pass after a failed validation.

    Exactly one attempt is made; if it fails too, the new errors are raised.
    """

    strategy: RepairStrategy = RepairStrategy.reask

    async def repair(
        self,
        raw: object,
        errors: CandidateValidationError,
        *,
        reask: Reasker | None = None,
    ) -> CandidateUpdate:
        if self.strategy == RepairStrategy.none:
            raise errors

        if self.strategy == RepairStrategy.clamp:
            try:
                data = decode_payload(raw)
            except CandidateValidationError:
                # Undecodable output has nothing to clamp.
                raise errors
            logger.info("repair: clamping candidate (issues=%s)", errors.fields())
            return validate_candidate(clamp_payload(data))

        if reask is None:
            raise errors

        logger.info("repair: re-asking model with %d issue(s): %s", len(errors.issues), errors.fields())
        second = await reask(errors.issues)
        return validate_candidate(second)
