from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from storyquest.api.models import PlayerState

EventType = Literal[
    "TURN_APPLIED",
    "TURN_FAILED",
    "SESSION_ENDED",
    "SESSION_RESTARTED",
    "IMAGE_READY",
    "IMAGE_FAILED",
]


@dataclass(frozen=True, slots=True)
class TurnEvent:
    type: EventType
    session_id: str
    turn_number: int
    payload: dict[str, Any]
    ts: datetime

    @staticmethod
    def now(*, type: EventType, session_id: str, turn_number: int, payload: dict[str, Any]) -> "TurnEvent":
        return TurnEvent(type=type, session_id=session_id, turn_number=turn_number, payload=payload, ts=datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "session_id": self.session_id,
            "turn_number": self.turn_number,
            "payload": self.payload,
            "ts": self.ts.isoformat(),
        }


def ui_payload(state: PlayerState) -> dict[str, Any]:
    """The per-turn view the presentation layer renders."""

    return {
        "player_message": state.player_message,
        "inventory": list(state.inventory),
        "stats": list(state.stats),
        "action_options": list(state.action_options),
        "can_rest": state.can_rest,
        "can_heal": state.can_heal,
        "status": state.status.value,
    }
