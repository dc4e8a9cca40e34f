from __future__ import annotations

import asyncio
from typing import get_args

import pytest

from storyquest.agents.images import LoggingImageCollaborator
from storyquest.api.models import ActionKind, PlayerState, SessionStatus
from storyquest.config import EngineConfig, RepairStrategy
from storyquest.core.events import EventType, TurnEvent
from storyquest.errors import GateViolation, InvalidModelOutput, InvalidTransition, ModelUnavailable, TurnInProgress
from storyquest.fsm import TurnPhase
from storyquest.state_store import PlayerStateStore
from storyquest.turn_engine import TurnEngine, infer_action_kind


def _engine(model, params, *, state: PlayerState | None = None, image=None, config: EngineConfig | None = None) -> TurnEngine:
    return TurnEngine(
        session_id="s1",
        params=params,
        store=PlayerStateStore(state=state),
        model=model,
        image=image,
        config=config or EngineConfig(model_timeout_s=1.0),
    )


async def test_successful_turn_applies_update(model, params, make_update) -> None:
    model.responses.append(make_update())
    engine = _engine(model, params)

    result = await engine.submit_action("Enter the temple")

    assert result.outcome == "continue"
    assert result.action == ActionKind.act
    assert result.state.stats == (100, 90, 10)
    assert result.state.turn_number == 1
    assert result.state.can_rest is False
    assert engine.phase == TurnPhase.awaiting_input
    assert engine.current() == result.state

    assert len(model.calls) == 1
    call = model.calls[0]
    assert call["player_input"] == "Enter the temple"
    assert call["context"] == params
    assert call["state"].turn_number == 0
    assert call["feedback"] is None


async def test_invalid_output_after_repair_leaves_state_unchanged(model, params, make_update) -> None:
    broken = make_update()
    del broken["action_options"]
    model.responses.extend([broken, dict(broken)])
    engine = _engine(model, params)

    with pytest.raises(InvalidModelOutput) as e:
        await engine.submit_action("Enter the temple")

    assert [i.field for i in e.value.issues] == ["action_options"]
    # One original call plus exactly one repair call.
    assert len(model.calls) == 2
    assert "action_options" in (model.calls[1]["feedback"] or "")
    assert engine.current().turn_number == 0
    assert engine.phase == TurnPhase.awaiting_input


async def test_repair_success_applies_second_payload(model, params, make_update) -> None:
    broken = make_update()
    del broken["action_options"]
    model.responses.extend([broken, make_update(player_stats=[95, 80, 12])])
    engine = _engine(model, params)

    result = await engine.submit_action("Search the altar")

    assert result.state.stats == (95, 80, 12)
    assert result.state.turn_number == 1
    assert len(model.calls) == 2


async def test_clamp_repair_does_not_call_model_again(model, params, make_update) -> None:
    model.responses.append(make_update(player_stats=[140, 90, 10]))
    engine = _engine(model, params, config=EngineConfig(model_timeout_s=1.0, repair_strategy=RepairStrategy.clamp))

    result = await engine.submit_action("Drink from the fountain")

    assert result.state.health == 100
    assert len(model.calls) == 1


async def test_rest_gate_checked_before_model_call(model, params) -> None:
    engine = _engine(model, params, state=PlayerState(can_rest=False, action_options=["a", "b", "c"]))

    with pytest.raises(GateViolation):
        await engine.submit_action("rest")

    assert model.calls == []
    assert engine.phase == TurnPhase.awaiting_input


async def test_heal_gate_checked_before_model_call(model, params) -> None:
    engine = _engine(model, params, state=PlayerState(health=60, can_heal=False))

    with pytest.raises(GateViolation):
        await engine.submit_action("Bandage my arm", kind=ActionKind.heal)

    assert model.calls == []


async def test_no_energy_only_allows_rest(model, params, make_update) -> None:
    engine = _engine(model, params, state=PlayerState(energy=0, can_rest=True))

    with pytest.raises(GateViolation):
        await engine.submit_action("Climb the waterfall")
    assert model.calls == []

    model.responses.append(make_update(player_stats=[100, 60, 10], in_combat=False))
    result = await engine.submit_action("rest by the fire")
    assert result.action == ActionKind.rest
    assert result.state.energy == 60


async def test_model_timeout_is_model_unavailable(model, params, make_update) -> None:
    model.delay_s = 0.5
    model.responses.append(make_update())
    engine = _engine(model, params, config=EngineConfig(model_timeout_s=0.05))

    with pytest.raises(ModelUnavailable):
        await engine.submit_action("Enter the temple")

    assert engine.current().turn_number == 0
    assert engine.phase == TurnPhase.awaiting_input


async def test_model_failure_is_model_unavailable(model, params) -> None:
    model.responses.append(ConnectionError("connection reset"))
    engine = _engine(model, params)

    with pytest.raises(ModelUnavailable) as e:
        await engine.submit_action("Enter the temple")

    assert "connection reset" in str(e.value)
    assert engine.current() == PlayerState()


async def test_concurrent_submission_is_rejected(model, params, make_update) -> None:
    model.delay_s = 0.05
    model.responses.append(make_update())
    engine = _engine(model, params)

    first = asyncio.create_task(engine.submit_action("Enter the temple"))
    await asyncio.sleep(0)
    assert engine.phase == TurnPhase.awaiting_model

    with pytest.raises(TurnInProgress):
        await engine.submit_action("Run away")

    result = await first
    assert result.state.turn_number == 1
    assert len(model.calls) == 1


async def test_terminal_session_rejects_every_submission_the_same_way(model, params, make_update) -> None:
    model.responses.append(make_update(player_stats=[0, 40, 10], action_options=[]))
    engine = _engine(model, params)

    result = await engine.submit_action("Fight the dragon")
    assert result.outcome == "lost"
    assert result.state.status == SessionStatus.lost
    assert engine.phase == TurnPhase.terminal

    messages = []
    for _ in range(3):
        with pytest.raises(InvalidTransition) as e:
            await engine.submit_action("Get up")
        messages.append(str(e.value))

    assert len(set(messages)) == 1
    assert engine.current() == result.state
    assert len(model.calls) == 1


async def test_quest_completion_wins(model, params, make_update) -> None:
    model.responses.append(make_update(quest_complete=True))
    engine = _engine(model, params)

    result = await engine.submit_action("Break the curse")

    assert result.outcome == "won"
    assert engine.phase == TurnPhase.terminal


async def test_image_request_dispatched_after_apply(model, params, make_update) -> None:
    model.responses.append(make_update(generate_image=True, image_prompt="A dragon over the swamp"))
    image = LoggingImageCollaborator()
    engine = _engine(model, params, image=image)

    events: list[TurnEvent] = []
    engine.add_listener(events.append)

    result = await engine.submit_action("Look up")
    await engine.wait_for_images()

    assert result.image_requested is True
    assert image.prompts == ["A dragon over the swamp"]
    assert [e.type for e in events] == ["TURN_APPLIED", "IMAGE_READY"]
    assert events[1].payload["image"] == "logged:1"


class _BrokenImages:
    async def request_image(self, prompt: str) -> str:
        raise RuntimeError("image backend down")


async def test_image_failure_does_not_touch_state(model, params, make_update) -> None:
    model.responses.append(make_update(generate_image=True, image_prompt="A mossy temple"))
    engine = _engine(model, params, image=_BrokenImages())

    events: list[TurnEvent] = []
    engine.add_listener(events.append)

    result = await engine.submit_action("Look around")
    await engine.wait_for_images()

    assert engine.current() == result.state
    assert events[-1].type == "IMAGE_FAILED"
    assert "image backend down" in events[-1].payload["error"]


async def test_no_image_request_when_session_ends(model, params, make_update) -> None:
    model.responses.append(make_update(quest_complete=True, generate_image=True, image_prompt="Victory"))
    image = LoggingImageCollaborator()
    engine = _engine(model, params, image=image)

    result = await engine.submit_action("Claim the artifact")
    await engine.wait_for_images()

    assert result.image_requested is False
    assert image.prompts == []


async def test_listeners_receive_ui_payload(model, params, make_update) -> None:
    model.responses.append(make_update())
    engine = _engine(model, params)

    seen: list[TurnEvent] = []

    async def _listener(event: TurnEvent) -> None:
        seen.append(event)

    engine.add_listener(_listener)
    await engine.submit_action("Enter the temple")

    assert len(seen) == 1
    payload = seen[0].payload
    assert payload["stats"] == [100, 90, 10]
    assert payload["inventory"] == ["dagger"]
    assert payload["status"] == "active"
    assert set(payload) >= {"player_message", "action_options", "can_rest", "can_heal"}


async def test_failing_listener_does_not_fail_turn(model, params, make_update) -> None:
    model.responses.append(make_update())
    engine = _engine(model, params)

    def _boom(event: TurnEvent) -> None:
        raise RuntimeError("socket gone")

    engine.add_listener(_boom)
    result = await engine.submit_action("Enter the temple")
    assert result.state.turn_number == 1


async def test_failed_turn_is_reported_to_listeners(model, params) -> None:
    model.responses.append(TimeoutError("slow"))
    engine = _engine(model, params)

    events: list[TurnEvent] = []
    engine.add_listener(events.append)

    with pytest.raises(ModelUnavailable):
        await engine.submit_action("Enter the temple")

    assert events[0].type == "TURN_FAILED"
    assert events[0].payload["error"] == "model_unavailable"


async def test_restart_only_after_terminal(model, params, make_update) -> None:
    engine = _engine(model, params)
    with pytest.raises(InvalidTransition):
        await engine.restart()

    model.responses.append(make_update(player_stats=[0, 0, 0]))
    await engine.submit_action("Jump into the chasm")
    assert engine.phase == TurnPhase.terminal

    state = await engine.restart()
    assert state == PlayerState()
    assert engine.phase == TurnPhase.awaiting_input

    model.responses.append(make_update())
    result = await engine.submit_action("Try again")
    assert result.state.turn_number == 1


def test_infer_action_kind() -> None:
    assert infer_action_kind("rest") == ActionKind.rest
    assert infer_action_kind("  Heal with herbs") == ActionKind.heal
    assert infer_action_kind("restore the shrine") == ActionKind.act
    assert infer_action_kind("rest", ActionKind.act) == ActionKind.act
    assert infer_action_kind("Attack", "heal") == ActionKind.heal


async def test_string_stats_out_of_range_go_through_repair(model, params, make_update) -> None:
    model.responses.extend([make_update(player_stats=["500", 90, 10]), make_update(player_stats=[100, 85, 10])])
    engine = _engine(model, params)

    result = await engine.submit_action("Drink from the fountain")

    assert len(model.calls) == 2
    assert "player_stats[health]" in (model.calls[1]["feedback"] or "")
    assert result.state.stats == (100, 85, 10)


async def test_string_stats_are_clamped_by_clamp_strategy(model, params, make_update) -> None:
    model.responses.append(make_update(player_stats=["500", "90", "10"]))
    engine = _engine(model, params, config=EngineConfig(model_timeout_s=1.0, repair_strategy=RepairStrategy.clamp))

    result = await engine.submit_action("Drink from the fountain")

    assert result.state.stats == (100, 90, 10)
    assert len(model.calls) == 1


class _FlakyImages:
    def __init__(self) -> None:
        self.calls = 0

    async def request_image(self, prompt: str) -> str:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("first image fails")
        return "img-2"


async def test_every_declared_event_type_is_emitted(model, params, make_update) -> None:
    engine = _engine(model, params, image=_FlakyImages())
    seen: list[TurnEvent] = []
    engine.add_listener(seen.append)

    model.responses.append(make_update(generate_image=True, image_prompt="A ruined gate", in_combat=False))
    await engine.submit_action("Look at the gate")
    await engine.wait_for_images()

    model.responses.append(ConnectionError("down"))
    with pytest.raises(ModelUnavailable):
        await engine.submit_action("Open the gate")

    model.responses.append(make_update(player_stats=[0, 10, 10], action_options=[]))
    await engine.submit_action("Fight the golem")
    await engine.restart()

    model.responses.append(make_update(generate_image=True, image_prompt="A quiet road"))
    await engine.submit_action("Walk on")
    await engine.wait_for_images()

    assert {e.type for e in seen} == set(get_args(EventType))
