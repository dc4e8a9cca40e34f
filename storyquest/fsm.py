from __future__ import annotations

from enum import StrEnum

from statemachine import State, StateMachine


class TurnPhase(StrEnum):
    awaiting_input = "awaiting_input"
    awaiting_model = "awaiting_model"
    validating = "validating"
    applying = "applying"
    terminal = "terminal"


IN_FLIGHT_PHASES = frozenset({TurnPhase.awaiting_model, TurnPhase.validating, TurnPhase.applying})


class TurnFSM(StateMachine):
    """Guards the per-session turn cycle.

    awaiting_input -> awaiting_model -> validating -> applying -> (awaiting_input | terminal)

    Any in-flight phase can fall back to awaiting_input when the turn fails; the
    engine decides which error is reported. `terminal` only leaves via `restart`.
    """

    awaiting_input = State(TurnPhase.awaiting_input.value, value=TurnPhase.awaiting_input.value, initial=True)
    awaiting_model = State(TurnPhase.awaiting_model.value, value=TurnPhase.awaiting_model.value)
    validating = State(TurnPhase.validating.value, value=TurnPhase.validating.value)
    applying = State(TurnPhase.applying.value, value=TurnPhase.applying.value)
    terminal = State(TurnPhase.terminal.value, value=TurnPhase.terminal.value)

    submit = awaiting_input.to(awaiting_model)
    model_returned = awaiting_model.to(validating)
    accepted = validating.to(applying)
    settled = applying.to(awaiting_input)
    finished = applying.to(terminal)
    abort = awaiting_model.to(awaiting_input) | validating.to(awaiting_input) | applying.to(awaiting_input)
    restart = terminal.to(awaiting_input)

    def __init__(self, phase: TurnPhase = TurnPhase.awaiting_input):
        super().__init__(start_value=TurnPhase(phase).value)

    @property
    def phase(self) -> TurnPhase:
        return TurnPhase(str(self.current_state_value))

    @property
    def in_flight(self) -> bool:
        return self.phase in IN_FLIGHT_PHASES
