from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

from storyquest.core.events import TurnEvent

logger = logging.getLogger(__name__)


class SessionWebSocketHub:
    """In-process WebSocket pub/sub keyed by session_id.

    Contract:
      - attach a connection to a session via `connect(session_id, websocket)`.
      - push per-turn UI events with `broadcast(session_id, payload)`.

    Payloads should be JSON-serializable dicts. With multiple API replicas this
    would have to move to Redis pub/sub.
    """

    def __init__(self) -> None:
        self._by_session: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_session[session_id].add(websocket)

    async def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_session.get(session_id)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_session.pop(session_id, None)

    async def broadcast(self, session_id: str, payload: dict[str, object]) -> None:
        async with self._lock:
            conns = list(self._by_session.get(session_id, set()))

        if not conns:
            return

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                dead.append(ws)

        if dead:
            logger.debug("dropping %d dead websocket(s) for session %s", len(dead), session_id)
            async with self._lock:
                for ws in dead:
                    self._by_session.get(session_id, set()).discard(ws)

    async def on_turn_event(self, event: TurnEvent) -> None:
        """Engine listener: forward every turn event to the session's sockets."""

        await self.broadcast(event.session_id, event.as_dict())


hub = SessionWebSocketHub()
