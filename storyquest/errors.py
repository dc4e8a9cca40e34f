from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class FieldIssue:
    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.field}: {self.reason}"


class CandidateValidationError(ValueError):
    """A candidate update failed the structural contract.

    `issues` lists every violated field, not just the first one.
    """

    def __init__(self, issues: list[FieldIssue]):
        self.issues = list(issues)
        super().__init__("; ".join(str(i) for i in self.issues) or "invalid candidate update")

    def fields(self) -> list[str]:
        return [i.field for i in self.issues]


class TurnError(RuntimeError):
    code: str = "turn_error"
    recoverable: bool = True


class ModelUnavailable(TurnError):
    code = "model_unavailable"


class InvalidModelOutput(TurnError):
    code = "invalid_model_output"

    def __init__(self, issues: list[FieldIssue]):
        self.issues = list(issues)
        detail = "; ".join(str(i) for i in self.issues)
        super().__init__(f"Model output rejected: {detail}")


class InvalidTransition(TurnError):
    code = "invalid_transition"
    recoverable = False


class TurnInProgress(TurnError):
    code = "turn_in_progress"


class GateViolation(TurnError):
    code = "gate_violation"


class SessionClosed(RuntimeError):
    pass


class SessionNotFound(ValueError):
    pass


class InvalidParameters(ValueError):
    pass
