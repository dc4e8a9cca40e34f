from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID, uuid4

from storyquest.agents.base import ImageCollaborator, ModelCollaborator
from storyquest.api.models import ActionKind, PlayerState, SessionParameters
from storyquest.catalog import freeze_parameters
from storyquest.config import EngineConfig
from storyquest.errors import SessionClosed, SessionNotFound
from storyquest.fsm import TurnPhase
from storyquest.session_store import SessionRecord
from storyquest.state_store import HealingItemCatalog, PlayerStateStore
from storyquest.turn_engine import TurnEngine, TurnListener, TurnResult

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class SessionHandle:
    """One playthrough: frozen parameters plus the engine/store pair that runs it."""

    session_id: UUID
    parameters: SessionParameters
    created_at: datetime
    last_updated_at: datetime
    _engine: TurnEngine | None = field(default=None, repr=False)

    @property
    def closed(self) -> bool:
        return self._engine is None

    @property
    def engine(self) -> TurnEngine:
        if self._engine is None:
            raise SessionClosed(f"Session {self.session_id} has ended")
        return self._engine

    def current(self) -> PlayerState:
        return self.engine.current()

    @property
    def phase(self) -> TurnPhase:
        return self.engine.phase

    async def submit_action(self, text: str, kind: ActionKind | str | None = None) -> TurnResult:
        result = await self.engine.submit_action(text, kind)
        self.last_updated_at = _now()
        return result

    async def restart(self) -> PlayerState:
        state = await self.engine.restart()
        self.last_updated_at = _now()
        return state

    def to_record(self) -> SessionRecord:
        if self._engine is None:
            raise SessionClosed(f"Session {self.session_id} has ended")
        return SessionRecord(
            session_id=self.session_id,
            created_at=self.created_at,
            last_updated_at=self.last_updated_at,
            parameters=self.parameters,
            state=self._engine.current(),
            phase=self._engine.phase.value,
        )


def _build_engine(
    *,
    session_id: UUID,
    parameters: SessionParameters,
    model: ModelCollaborator,
    image: ImageCollaborator | None,
    config: EngineConfig,
    state: PlayerState | None = None,
) -> TurnEngine:
    store = PlayerStateStore(
        healing_items=HealingItemCatalog(keywords=config.healing_keywords),
        clamp_stats=config.clamp_stats,
        state=state,
    )
    # A persisted session is never mid-turn; only terminal vs awaiting input survives a restart.
    phase = TurnPhase.terminal if state is not None and state.is_terminal else TurnPhase.awaiting_input
    return TurnEngine(
        session_id=str(session_id),
        params=parameters,
        store=store,
        model=model,
        image=image,
        config=config,
        phase=phase,
    )


def create_session(
    parameters: Mapping[str, str | None],
    *,
    model: ModelCollaborator,
    image: ImageCollaborator | None = None,
    config: EngineConfig | None = None,
    session_id: UUID | None = None,
) -> SessionHandle:
    """Freeze the player's category choices and start a fresh session."""

    params = freeze_parameters(parameters)
    sid = session_id or uuid4()
    now = _now()
    engine = _build_engine(session_id=sid, parameters=params, model=model, image=image, config=config or EngineConfig())
    logger.info("session %s created", sid)
    return SessionHandle(session_id=sid, parameters=params, created_at=now, last_updated_at=now, _engine=engine)


def restore_session(
    record: SessionRecord,
    *,
    model: ModelCollaborator,
    image: ImageCollaborator | None = None,
    config: EngineConfig | None = None,
) -> SessionHandle:
    """Rebuild a live handle from a persisted record."""

    if record.closed:
        raise SessionClosed(f"Session {record.session_id} has ended")
    engine = _build_engine(
        session_id=record.session_id,
        parameters=record.parameters,
        model=model,
        image=image,
        config=config or EngineConfig(),
        state=record.state,
    )
    return SessionHandle(
        session_id=record.session_id,
        parameters=record.parameters,
        created_at=record.created_at,
        last_updated_at=record.last_updated_at,
        _engine=engine,
    )


def end_session(handle: SessionHandle) -> None:
    """Tear down the engine and store; later calls on the handle raise SessionClosed."""

    if handle._engine is None:
        return
    handle._engine.close()
    handle._engine = None
    handle.last_updated_at = _now()
    logger.info("session %s ended", handle.session_id)


async def restart_session(handle: SessionHandle) -> PlayerState:
    """Replay a finished session with the same parameters; rejected mid-session."""

    return await handle.restart()


class SessionRegistry:
    """In-process map of live sessions keyed by session id.

    Sessions are isolated from each other; persistence lives in `session_store`.
    """

    def __init__(self) -> None:
        self._by_id: dict[UUID, SessionHandle] = {}
        self._listeners: list[TurnListener] = []

    def add_listener(self, listener: TurnListener) -> None:
        """Listener attached to every session this registry creates or restores."""

        self._listeners.append(listener)

    def _track(self, handle: SessionHandle) -> SessionHandle:
        for listener in self._listeners:
            handle.engine.add_listener(listener)
        self._by_id[handle.session_id] = handle
        return handle

    def create(
        self,
        parameters: Mapping[str, str | None],
        *,
        model: ModelCollaborator,
        image: ImageCollaborator | None = None,
        config: EngineConfig | None = None,
    ) -> SessionHandle:
        return self._track(create_session(parameters, model=model, image=image, config=config))

    def get(self, session_id: UUID) -> SessionHandle | None:
        return self._by_id.get(session_id)

    def get_or_restore(
        self,
        record: SessionRecord | None,
        session_id: UUID,
        *,
        model: ModelCollaborator,
        image: ImageCollaborator | None = None,
        config: EngineConfig | None = None,
    ) -> SessionHandle:
        handle = self._by_id.get(session_id)
        if handle is not None:
            return handle
        if record is None:
            raise SessionNotFound("Session not found")
        return self._track(restore_session(record, model=model, image=image, config=config))

    def end(self, session_id: UUID) -> SessionHandle | None:
        handle = self._by_id.pop(session_id, None)
        if handle is not None:
            end_session(handle)
        return handle

    def clear(self) -> None:
        for sid in list(self._by_id):
            self.end(sid)
