from __future__ import annotations

import json
from typing import Any, cast
from uuid import UUID

import redis

from storyquest.core.events import TurnEvent


def turn_log_key(session_id: UUID | str) -> str:
    return f"session:{session_id}:turns"


def publish_turn_event(*, r: redis.Redis, event: TurnEvent) -> str:
    """Append a turn event to the session's replay log (a Redis Stream)."""

    fields = {
        "type": event.type,
        "session_id": event.session_id,
        "turn_number": str(event.turn_number),
        "ts": event.ts.isoformat(),
        "payload": json.dumps(event.payload),
    }
    stream_id = r.xadd(turn_log_key(event.session_id), fields)
    return cast(str, stream_id)


def read_turn_history(*, r: redis.Redis, session_id: UUID | str, count: int = 100) -> list[dict[str, Any]]:
    entries = r.xrange(turn_log_key(session_id), min="-", max="+", count=count)
    history: list[dict[str, Any]] = []
    for entry_id, fields in entries:
        history.append(
            {
                "id": entry_id,
                "type": fields.get("type"),
                "turn_number": int(fields.get("turn_number", "0")),
                "ts": fields.get("ts"),
                "payload": json.loads(fields.get("payload") or "{}"),
            }
        )
    return history
