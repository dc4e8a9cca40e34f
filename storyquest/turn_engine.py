from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal

from storyquest.agents.base import ImageCollaborator, ModelCollaborator
from storyquest.api.models import ActionKind, CandidateUpdate, PlayerState, SessionParameters, SessionStatus
from storyquest.config import EngineConfig
from storyquest.core.events import EventType, TurnEvent, ui_payload
from storyquest.errors import (
    CandidateValidationError,
    FieldIssue,
    InvalidModelOutput,
    InvalidTransition,
    ModelUnavailable,
    SessionClosed,
    TurnError,
    TurnInProgress,
)
from storyquest.fsm import TurnFSM, TurnPhase
from storyquest.state_store import PlayerStateStore
from storyquest.turn_processing.repair import RepairHook, format_feedback
from storyquest.turn_processing.validators import ValidationContext, pipeline_for_action, validate_candidate

logger = logging.getLogger(__name__)

TurnListener = Callable[[TurnEvent], Awaitable[None] | None]
Outcome = Literal["continue", "won", "lost"]

_ACTION_WORD = re.compile(r"^\s*(rest|heal)\b", re.IGNORECASE)


def infer_action_kind(text: str, kind: ActionKind | str | None = None) -> ActionKind:
    """Explicit kind wins; otherwise a leading "rest"/"heal" marks the action."""

    if kind is not None:
        return ActionKind(kind)
    m = _ACTION_WORD.match(text)
    if m:
        return ActionKind(m.group(1).casefold())
    return ActionKind.act


def _outcome_for(state: PlayerState) -> Outcome:
    if state.status == SessionStatus.won:
        return "won"
    if state.status == SessionStatus.lost:
        return "lost"
    return "continue"


@dataclass(frozen=True, slots=True)
class TurnResult:
    state: PlayerState
    outcome: Outcome
    event: TurnEvent
    action: ActionKind
    image_requested: bool = False


class TurnEngine:
    """Runs one session's turns: gate -> model -> validate/repair -> apply.

    Turns are strictly serialized: a submission while another is in flight is
    rejected with TurnInProgress, never queued. Failed turns leave the store
    untouched.
    """

    def __init__(
        self,
        *,
        session_id: str,
        params: SessionParameters,
        store: PlayerStateStore,
        model: ModelCollaborator,
        image: ImageCollaborator | None = None,
        config: EngineConfig | None = None,
        repair: RepairHook | None = None,
        phase: TurnPhase = TurnPhase.awaiting_input,
    ) -> None:
        self.session_id = session_id
        self.params = params
        self.config = config or EngineConfig()
        self._store = store
        self._model = model
        self._image = image
        self._repair = repair or RepairHook(strategy=self.config.repair_strategy)
        self._fsm = TurnFSM(phase)
        self._listeners: list[TurnListener] = []
        self._image_tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def phase(self) -> TurnPhase:
        return self._fsm.phase

    @property
    def closed(self) -> bool:
        return self._closed

    def current(self) -> PlayerState:
        return self._store.current()

    def add_listener(self, listener: TurnListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TurnListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _emit(self, event: TurnEvent) -> None:
        for listener in list(self._listeners):
            try:
                res = listener(event)
                if inspect.isawaitable(res):
                    await res
            except Exception:
                # Listeners are presentation/persistence sinks; the turn is already settled.
                logger.exception("turn listener failed (session=%s event=%s)", self.session_id, event.type)

    def _event(self, type: EventType, state: PlayerState, **extra: object) -> TurnEvent:
        payload: dict[str, object] = ui_payload(state)
        payload.update(extra)
        return TurnEvent.now(type=type, session_id=self.session_id, turn_number=state.turn_number, payload=payload)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosed(f"Session {self.session_id} has ended")

    async def _call_model(self, *, state: PlayerState, text: str, feedback: str | None = None) -> object:
        try:
            return await asyncio.wait_for(
                self._model.invoke(context=self.params, state=state, player_input=text, feedback=feedback),
                timeout=self.config.model_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ModelUnavailable(f"Model call timed out after {self.config.model_timeout_s}s") from e
        except TurnError:
            raise
        except Exception as e:
            raise ModelUnavailable(f"Model call failed: {e}") from e

    async def _validate_or_repair(self, *, raw: object, state: PlayerState, text: str) -> CandidateUpdate:
        try:
            return validate_candidate(raw)
        except CandidateValidationError as first:
            logger.warning("candidate rejected (session=%s): %s", self.session_id, first)

            async def _reask(issues: list[FieldIssue]) -> object:
                return await self._call_model(state=state, text=text, feedback=format_feedback(issues))

            try:
                return await self._repair.repair(raw, first, reask=_reask)
            except CandidateValidationError as second:
                raise InvalidModelOutput(second.issues) from second

    async def submit_action(self, text: str, kind: ActionKind | str | None = None) -> TurnResult:
        """Play one turn.

        Raises TurnInProgress, InvalidTransition, GateViolation (before any model
        call), ModelUnavailable or InvalidModelOutput (state unchanged).
        """

        self._ensure_open()

        if self._fsm.in_flight:
            raise TurnInProgress(f"A turn is already in progress for session {self.session_id}")
        if self._fsm.phase == TurnPhase.terminal:
            raise InvalidTransition(f"Session is over (status={self._store.current().status.value})")

        action = infer_action_kind(text, kind)
        state = self._store.current()

        ctx = ValidationContext(session_id=self.session_id, action=action, text=text)
        try:
            pipeline_for_action(action).validate(ctx=ctx, state=state)
        except TurnError as e:
            logger.info("action denied (session=%s action=%s): %s", self.session_id, action.value, e)
            raise

        self._fsm.submit()
        logger.info("turn %d started (session=%s action=%s)", state.turn_number + 1, self.session_id, action.value)

        try:
            raw = await self._call_model(state=state, text=text)
            self._fsm.model_returned()

            update = await self._validate_or_repair(raw=raw, state=state, text=text)
            self._fsm.accepted()

            try:
                new_state = self._store.apply(update)
            except InvalidTransition as e:
                raise InvalidModelOutput([FieldIssue("$", str(e))]) from e
        except TurnError as e:
            if self._fsm.in_flight:
                self._fsm.abort()
            logger.warning("turn failed (session=%s code=%s): %s", self.session_id, e.code, e)
            await self._emit(self._event("TURN_FAILED", state, error=e.code, detail=str(e)))
            raise
        except BaseException:
            if self._fsm.in_flight:
                self._fsm.abort()
            raise

        if new_state.is_terminal:
            self._fsm.finished()
            logger.info("session %s ended: %s at turn %d", self.session_id, new_state.status.value, new_state.turn_number)
        else:
            self._fsm.settled()

        image_requested = False
        if update.generate_image and not new_state.is_terminal and update.image_prompt.strip() and self._image is not None:
            self._dispatch_image(prompt=update.image_prompt, turn_number=new_state.turn_number)
            image_requested = True

        event = self._event("TURN_APPLIED", new_state, image_requested=image_requested)
        await self._emit(event)
        if new_state.is_terminal:
            await self._emit(self._event("SESSION_ENDED", new_state))

        return TurnResult(
            state=new_state,
            outcome=_outcome_for(new_state),
            event=event,
            action=action,
            image_requested=image_requested,
        )

    def _dispatch_image(self, *, prompt: str, turn_number: int) -> None:
        task = asyncio.create_task(self._generate_image(prompt=prompt, turn_number=turn_number))
        self._image_tasks.add(task)
        task.add_done_callback(self._image_tasks.discard)

    async def _generate_image(self, *, prompt: str, turn_number: int) -> None:
        assert self._image is not None
        try:
            handle = await self._image.request_image(prompt)
        except Exception as e:
            # Image failures never touch game state.
            logger.warning("image generation failed (session=%s turn=%d): %s", self.session_id, turn_number, e)
            await self._emit(
                TurnEvent.now(
                    type="IMAGE_FAILED",
                    session_id=self.session_id,
                    turn_number=turn_number,
                    payload={"error": str(e)},
                )
            )
            return

        await self._emit(
            TurnEvent.now(
                type="IMAGE_READY",
                session_id=self.session_id,
                turn_number=turn_number,
                payload={"image": handle, "image_prompt": prompt},
            )
        )

    async def wait_for_images(self) -> None:
        if self._image_tasks:
            await asyncio.gather(*list(self._image_tasks), return_exceptions=True)

    async def restart(self) -> PlayerState:
        """Start a new playthrough with the same parameters. Only allowed once the session is over."""

        self._ensure_open()
        if self._fsm.phase != TurnPhase.terminal:
            raise InvalidTransition("Cannot restart a session that is still in progress")
        state = self._store.reset()
        self._fsm.restart()
        await self._emit(self._event("SESSION_RESTARTED", state))
        return state

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in list(self._image_tasks):
            task.cancel()
        self._listeners.clear()
