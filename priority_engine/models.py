"""Data models for the work-item prioritization engine.

Wire and storage documents use camelCase keys (``urgencyLevel``, ``waitTimeCapHours``);
Python code uses the snake_case attribute names. Every model is frozen: the engine
reads snapshots and never mutates them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from priority_engine.config import DEFAULT_VALUE_REFERENCE, DEFAULT_WAIT_TIME_CAP_HOURS

_WIRE_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Stage(str, Enum):
    """Workflow stages of a repair ticket."""

    RECEIVED = "received"
    DIAGNOSING = "diagnosing"
    REPAIRING = "repairing"
    PAUSED = "paused"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# --- Work items (owned by the external ticket store) ---


class WorkItem(BaseModel):
    """Read-only snapshot of a pending repair ticket."""

    model_config = _WIRE_CONFIG

    id: str = Field(..., min_length=1, description="Ticket identifier")
    device_descriptor: str = Field(default="", description="e.g. 'iPhone 14 Pro'")
    issue_description: str = Field(default="", description="Free-text problem description")
    created_at: Optional[datetime] = Field(default=None, description="Ticket creation time (UTC)")
    urgency_level: Optional[int] = Field(default=None, description="Ordinal 1-5, clamped when scored")
    technical_complexity: Optional[int] = Field(default=None, description="Ordinal 1-5, clamped when scored")
    historical_customer_value: float = Field(default=0.0, ge=0.0, allow_inf_nan=False)
    current_stage: Stage = Stage.RECEIVED

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("historical_customer_value", mode="before")
    @classmethod
    def _unknown_value_is_zero(cls, value):
        return 0.0 if value is None else value


# --- Priority configuration (edited by an operator, validated by the Config Store) ---


class PriorityWeights(BaseModel):
    """Non-negative factor weights. They need not sum to 1."""

    model_config = _WIRE_CONFIG

    urgency: float = Field(..., ge=0.0, allow_inf_nan=False)
    wait_time: float = Field(..., ge=0.0, allow_inf_nan=False)
    historical_value: float = Field(..., ge=0.0, allow_inf_nan=False)
    technical_complexity: float = Field(..., ge=0.0, allow_inf_nan=False)


class RuleCondition(BaseModel):
    """Predicate over a WorkItem. An omitted sub-field is a wildcard."""

    model_config = _WIRE_CONFIG

    stage: Optional[Stage] = None
    issue_includes: Optional[str] = None

    @model_validator(mode="after")
    def _at_least_one_predicate(self) -> "RuleCondition":
        # A condition that matches every ticket is almost always a config mistake.
        if self.stage is None and not self.issue_includes:
            raise ValueError("condition must specify stage and/or issueIncludes")
        return self


class RuleEffect(BaseModel):
    model_config = _WIRE_CONFIG

    priority_bonus: float = Field(..., allow_inf_nan=False, description="Signed additive bonus")


class PriorityRule(BaseModel):
    """A conditional bonus applied when a ticket matches the rule's condition."""

    model_config = _WIRE_CONFIG

    id: str
    name: str
    condition: RuleCondition
    effect: RuleEffect

    @field_validator("id", "name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value


class PriorityConfig(BaseModel):
    """Active weight vector plus rule set. Treated as an immutable value."""

    model_config = _WIRE_CONFIG

    weights: PriorityWeights
    rules: tuple[PriorityRule, ...] = ()
    wait_time_cap_hours: float = Field(default=DEFAULT_WAIT_TIME_CAP_HOURS, gt=0.0, allow_inf_nan=False)
    value_reference: float = Field(default=DEFAULT_VALUE_REFERENCE, gt=0.0, allow_inf_nan=False)
    version: int = Field(default=0, ge=0)
    updated_at: Optional[datetime] = None


# Weights used by the repair board before any operator edits.
DEFAULT_CONFIG = PriorityConfig(
    weights=PriorityWeights(
        urgency=0.4,
        wait_time=0.3,
        historical_value=0.2,
        technical_complexity=0.1,
    ),
)


# --- Scoring output (ephemeral, recomputed on every pass) ---


class ScoreBreakdown(BaseModel):
    """Weighted contribution of each factor, for explainability."""

    model_config = _WIRE_CONFIG

    urgency: float = 0.0
    wait_time: float = 0.0
    historical_value: float = 0.0
    technical_complexity: float = 0.0
    rule_bonus: float = 0.0
    matched_rules: tuple[str, ...] = Field(default=(), description="Ids of matching rules, in config order")


class ScoreResult(BaseModel):
    model_config = _WIRE_CONFIG

    total: float
    breakdown: ScoreBreakdown


class ScoredItem(BaseModel):
    """WorkItem annotated with its score for one evaluation pass."""

    model_config = _WIRE_CONFIG

    item: WorkItem
    score: float
    breakdown: ScoreBreakdown


class OrderingSnapshot(BaseModel):
    """A complete, published priority ordering. Replaced wholesale, never edited."""

    model_config = _WIRE_CONFIG

    items: tuple[ScoredItem, ...] = ()
    sequence: int = Field(default=0, description="Incremented on every publish")
    config_version: Optional[int] = None
    computed_at: Optional[datetime] = None


# --- Change notifications from the ticket store / settings surface ---


class ChangeKind(str, Enum):
    ITEM_ADDED = "item_added"
    ITEM_UPDATED = "item_updated"
    ITEM_REMOVED = "item_removed"
    CONFIG_REPLACED = "config_replaced"
    MANUAL = "manual"


class ChangeEvent(BaseModel):
    """Something changed; the payload is informational, recompute always re-reads the store."""

    model_config = _WIRE_CONFIG

    kind: ChangeKind
    item_id: Optional[str] = None
    # Instance id of the engine process that published the event, if any.
    origin: Optional[str] = None
