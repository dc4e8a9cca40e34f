from __future__ import annotations

import json

import pytest

from storyquest.errors import CandidateValidationError
from storyquest.turn_processing.validators import validate_candidate


def test_valid_payload_is_accepted(make_update) -> None:
    update = validate_candidate(make_update())

    assert update.player_stats == (100, 90, 10)
    assert update.inventory == ["dagger"]
    assert update.in_combat is True
    assert update.quest_complete is False


def test_accepts_json_text_inside_fenced_block(make_update) -> None:
    text = "Here you go:\n```json\n" + json.dumps(make_update()) + "\n```"
    update = validate_candidate(text)
    assert update.health == 100
    assert update.energy == 90
    assert update.gold == 10


def test_missing_action_options_is_reported(make_update) -> None:
    payload = make_update()
    del payload["action_options"]

    with pytest.raises(CandidateValidationError) as e:
        validate_candidate(payload)

    assert "action_options" in e.value.fields()
    assert "action_options" in str(e.value)


def test_every_violated_field_is_listed(make_update) -> None:
    payload = make_update(can_rest="sometimes", player_stats=[150, 90, 10])
    del payload["action_options"]

    with pytest.raises(CandidateValidationError) as e:
        validate_candidate(payload)

    fields = e.value.fields()
    assert "action_options" in fields
    assert "can_rest" in fields
    assert "player_stats[health]" in fields


def test_store_owned_fields_cannot_be_proposed(make_update) -> None:
    with pytest.raises(CandidateValidationError) as e:
        validate_candidate(make_update(turn_number=99, status="won"))

    assert "turn_number" in e.value.fields()
    assert "status" in e.value.fields()


def test_negative_gold_and_energy_over_max_rejected(make_update) -> None:
    with pytest.raises(CandidateValidationError) as e:
        validate_candidate(make_update(player_stats=[50, 101, -1]))

    assert set(e.value.fields()) == {"player_stats[energy]", "player_stats[gold]"}


def test_option_count_must_be_three_while_playing(make_update) -> None:
    with pytest.raises(CandidateValidationError) as e:
        validate_candidate(make_update(action_options=["Run", "Hide"]))
    assert e.value.fields() == ["action_options"]


def test_terminal_candidate_may_drop_options(make_update) -> None:
    won = validate_candidate(make_update(action_options=[], quest_complete=True))
    assert won.action_options == []

    dead = validate_candidate(make_update(action_options=[], player_stats=[0, 20, 5]))
    assert dead.health == 0


def test_invalid_json_reports_root() -> None:
    with pytest.raises(CandidateValidationError) as e:
        validate_candidate("{not json")
    assert e.value.fields() == ["$"]
    assert "invalid JSON" in str(e.value)


def test_non_object_payload_rejected() -> None:
    with pytest.raises(CandidateValidationError) as e:
        validate_candidate([1, 2, 3])
    assert e.value.fields() == ["$"]


def test_stats_tuple_wrong_length(make_update) -> None:
    with pytest.raises(CandidateValidationError) as e:
        validate_candidate(make_update(player_stats=[100, 90]))
    assert any(f.startswith("player_stats") for f in e.value.fields())


def test_string_stats_are_range_checked_after_coercion(make_update) -> None:
    with pytest.raises(CandidateValidationError) as e:
        validate_candidate(make_update(player_stats=["500", 90, 10]))
    assert e.value.fields() == ["player_stats[health]"]
    assert "500" in str(e.value)


def test_string_zero_health_counts_as_terminal(make_update) -> None:
    update = validate_candidate(make_update(player_stats=["0", "20", "3"], action_options=[]))
    assert update.player_stats == (0, 20, 3)
