from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

import redis
from pydantic import BaseModel

from storyquest.api.models import PlayerState, SessionParameters
from storyquest.errors import SessionNotFound

SESSIONS_SET_KEY = "storyquest:sessions"
SESSION_KEY_PREFIX = "storyquest:session:"  # + {uuid}


class SessionRecord(BaseModel):
    """Persisted layout of a session: player state + parameters, keyed by session id."""

    session_id: UUID
    created_at: datetime
    last_updated_at: datetime
    parameters: SessionParameters
    state: PlayerState
    phase: str
    closed: bool = False

    @property
    def turn_number(self) -> int:
        return self.state.turn_number


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _session_key(session_id: UUID) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def save_session(*, r: redis.Redis, record: SessionRecord) -> None:
    r.set(_session_key(record.session_id), record.model_dump_json())
    r.sadd(SESSIONS_SET_KEY, str(record.session_id))


def get_session(*, r: redis.Redis, session_id: UUID) -> SessionRecord | None:
    raw = r.get(_session_key(session_id))
    if not raw:
        return None
    return SessionRecord.model_validate_json(raw)


def require_session(*, r: redis.Redis, session_id: UUID) -> SessionRecord:
    record = get_session(r=r, session_id=session_id)
    if record is None:
        raise SessionNotFound("Session not found")
    return record


def mark_session_closed(*, r: redis.Redis, session_id: UUID) -> SessionRecord:
    """Archive a session: the record stays readable but can't be resumed."""

    record = require_session(r=r, session_id=session_id)
    record.closed = True
    record.last_updated_at = _now()
    save_session(r=r, record=record)
    return record


def list_sessions(*, r: redis.Redis) -> list[SessionRecord]:
    ids = sorted(r.smembers(SESSIONS_SET_KEY))
    out: list[SessionRecord] = []
    for sid in ids:
        try:
            session_id = UUID(sid)
        except ValueError:
            continue
        record = get_session(r=r, session_id=session_id)
        if record is not None:
            out.append(record)
    out.sort(key=lambda s: s.created_at, reverse=True)
    return out
