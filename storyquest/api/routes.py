from __future__ import annotations

from uuid import UUID

import redis
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from storyquest.agents.base import ImageCollaborator, ModelCollaborator
from storyquest.api.deps import (
    get_engine_config,
    get_image_collaborator,
    get_model_collaborator,
    get_redis,
    get_registry,
)
from storyquest.api.models import (
    ActionRequest,
    SessionCreateRequest,
    SessionListResponse,
    SessionView,
    TurnEventModel,
    TurnResponse,
)
from storyquest.catalog import catalog_as_dict
from storyquest.config import EngineConfig
from storyquest.core.events import TurnEvent, ui_payload
from storyquest.errors import (
    GateViolation,
    InvalidModelOutput,
    InvalidParameters,
    InvalidTransition,
    ModelUnavailable,
    SessionClosed,
    SessionNotFound,
    TurnError,
    TurnInProgress,
)
from storyquest.lock import session_lock
from storyquest.session_store import SessionRecord, get_session, list_sessions, mark_session_closed, save_session
from storyquest.sessions import SessionHandle, SessionRegistry
from storyquest.streams import publish_turn_event, read_turn_history
from storyquest.websocket_hub import hub

router = APIRouter()

_TURN_ERROR_STATUS: dict[type[TurnError], int] = {
    TurnInProgress: status.HTTP_409_CONFLICT,
    GateViolation: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    InvalidModelOutput: status.HTTP_502_BAD_GATEWAY,
    ModelUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _turn_http_error(e: TurnError) -> HTTPException:
    detail: dict[str, object] = {"code": e.code, "message": str(e), "recoverable": e.recoverable}
    if isinstance(e, InvalidModelOutput):
        detail["issues"] = [{"field": i.field, "reason": i.reason} for i in e.issues]
    code = _TURN_ERROR_STATUS.get(type(e), status.HTTP_409_CONFLICT)
    return HTTPException(status_code=code, detail=detail)


def _view_from_record(record: SessionRecord) -> SessionView:
    return SessionView(
        session_id=record.session_id,
        created_at=record.created_at,
        last_updated_at=record.last_updated_at,
        parameters=record.parameters,
        state=record.state,
        phase=record.phase,
        closed=record.closed,
    )


def _view_from_handle(handle: SessionHandle) -> SessionView:
    return _view_from_record(handle.to_record())


def _live_handle(
    *,
    session_id: UUID,
    r: redis.Redis,
    registry: SessionRegistry,
    model: ModelCollaborator,
    image: ImageCollaborator,
    config: EngineConfig,
) -> SessionHandle:
    try:
        handle = registry.get(session_id)
        if handle is not None:
            return handle
        record = get_session(r=r, session_id=session_id)
        return registry.get_or_restore(record, session_id, model=model, image=image, config=config)
    except SessionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except SessionClosed as e:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(e)) from e


@router.websocket("/ws/sessions/{session_id}")
async def session_updates_ws(websocket: WebSocket, session_id: UUID) -> None:
    sid = str(session_id)
    await hub.connect(sid, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(sid, websocket)
    except Exception:
        await hub.disconnect(sid, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/categories")
async def categories_route() -> dict[str, dict[str, object]]:
    return catalog_as_dict()


@router.post("/sessions", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    payload: SessionCreateRequest,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
    model: ModelCollaborator = Depends(get_model_collaborator),
    image: ImageCollaborator = Depends(get_image_collaborator),
    config: EngineConfig = Depends(get_engine_config),
) -> SessionView:
    try:
        handle = registry.create(payload.parameters, model=model, image=image, config=config)
    except InvalidParameters as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    save_session(r=r, record=handle.to_record())
    return _view_from_handle(handle)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions_route(r: redis.Redis = Depends(get_redis)) -> SessionListResponse:
    return SessionListResponse(sessions=[_view_from_record(rec) for rec in list_sessions(r=r)])


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    handle = registry.get(session_id)
    if handle is not None:
        return _view_from_handle(handle)
    record = get_session(r=r, session_id=session_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return _view_from_record(record)


@router.post("/sessions/{session_id}/actions", response_model=TurnResponse)
async def submit_action_route(
    session_id: UUID,
    payload: ActionRequest,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
    model: ModelCollaborator = Depends(get_model_collaborator),
    image: ImageCollaborator = Depends(get_image_collaborator),
    config: EngineConfig = Depends(get_engine_config),
) -> TurnResponse:
    handle = _live_handle(session_id=session_id, r=r, registry=registry, model=model, image=image, config=config)

    try:
        with session_lock(r=r, session_id=session_id):
            result = await handle.submit_action(payload.text, payload.kind)
            save_session(r=r, record=handle.to_record())
    except TurnError as e:
        raise _turn_http_error(e) from e
    except SessionClosed as e:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(e)) from e

    publish_turn_event(r=r, event=result.event)

    event = TurnEventModel(
        session_id=str(session_id),
        turn_number=result.state.turn_number,
        image_requested=result.image_requested,
        **ui_payload(result.state),
    )
    return TurnResponse(session=_view_from_handle(handle), event=event, outcome=result.outcome)


@router.post("/sessions/{session_id}/restart", response_model=SessionView)
async def restart_session_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
    model: ModelCollaborator = Depends(get_model_collaborator),
    image: ImageCollaborator = Depends(get_image_collaborator),
    config: EngineConfig = Depends(get_engine_config),
) -> SessionView:
    handle = _live_handle(session_id=session_id, r=r, registry=registry, model=model, image=image, config=config)

    try:
        with session_lock(r=r, session_id=session_id):
            state = await handle.restart()
            save_session(r=r, record=handle.to_record())
    except TurnError as e:
        raise _turn_http_error(e) from e

    publish_turn_event(
        r=r,
        event=TurnEvent.now(type="SESSION_RESTARTED", session_id=str(session_id), turn_number=0, payload=ui_payload(state)),
    )
    return _view_from_handle(handle)


@router.delete("/sessions/{session_id}", response_model=SessionView)
async def end_session_route(
    session_id: UUID,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionView:
    handle = registry.get(session_id)
    if handle is not None and not handle.closed:
        # Persist the final snapshot before the engine goes away.
        save_session(r=r, record=handle.to_record())
    registry.end(session_id)

    try:
        record = mark_session_closed(r=r, session_id=session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    publish_turn_event(
        r=r,
        event=TurnEvent.now(
            type="SESSION_ENDED",
            session_id=str(session_id),
            turn_number=record.turn_number,
            payload=ui_payload(record.state),
        ),
    )
    return _view_from_record(record)


@router.get("/sessions/{session_id}/history")
async def session_history_route(
    session_id: UUID,
    count: int = 100,
    r: redis.Redis = Depends(get_redis),
) -> dict[str, object]:
    """Replay log: every applied turn, restart and end for this session, in order."""

    if count < 1 or count > 1000:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 1000")
    if get_session(r=r, session_id=session_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")

    return {"session_id": str(session_id), "turns": read_turn_history(r=r, session_id=session_id, count=count)}
