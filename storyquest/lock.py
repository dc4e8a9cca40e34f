from __future__ import annotations

from contextlib import contextmanager
from uuid import UUID

import redis

from storyquest.errors import TurnInProgress


@contextmanager
def session_lock(*, r: redis.Redis, session_id: UUID | str, ttl_ms: int = 60_000):
    """Best-effort per-session turn lock shared across API workers.

    Contention is reported, never waited on: a busy session raises TurnInProgress.
    The TTL only bounds how long a crashed worker can hold the lock.
    """

    key = f"lock:session:{session_id}"
    acquired = r.set(key, "1", nx=True, px=ttl_ms)
    if not acquired:
        raise TurnInProgress("Session is busy")
    try:
        yield
    finally:
        r.delete(key)
