"""Error taxonomy for the priority engine."""

from pydantic import BaseModel, Field


class FieldError(BaseModel):
    """One offending field in a rejected configuration document."""

    field: str = Field(..., description="Dotted path, e.g. weights.urgency or rules.0.condition")
    message: str


class PriorityEngineError(Exception):
    """Base class for errors raised by the engine."""


class ConfigValidationError(PriorityEngineError):
    """A candidate PriorityConfig was rejected at the Config Store boundary."""

    def __init__(self, errors: list[FieldError]):
        self.errors = errors
        fields = ", ".join(e.field for e in errors) or "<document>"
        super().__init__(f"Invalid priority config ({fields})")

    def to_dict(self) -> dict:
        return {"errors": [e.model_dump() for e in self.errors]}


class ComputationError(PriorityEngineError):
    """Scoring produced a non-finite total (not expected for valid input)."""


class StaleDataWarning(UserWarning):
    """Fetching items or config failed or timed out; last-known-good data is kept.

    Raised by the timed fetch helpers and caught inside the engine; it is logged,
    never surfaced to subscribers.
    """
