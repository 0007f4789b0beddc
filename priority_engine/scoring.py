"""
Scoring function: pure (WorkItem, PriorityConfig) -> score with per-factor breakdown.

Each factor is normalized to [0, 1] and multiplied by its weight:

  urgency      = clamp(urgencyLevel, 1, 5) / 5
  complexity   = clamp(technicalComplexity, 1, 5) / 5
  wait time    = min(hoursWaited / waitTimeCapHours, 1)
  value        = min(historicalCustomerValue / valueReference, 1)

Rule bonuses are added on top. Missing optional fields contribute 0.
"""

import math
from datetime import datetime, timezone
from typing import Iterable, Optional

from priority_engine.errors import ComputationError
from priority_engine.models import (
    PriorityConfig,
    ScoreBreakdown,
    ScoredItem,
    ScoreResult,
    WorkItem,
)
from priority_engine.ordering import sort_scored
from priority_engine.rules import rule_bonus

ORDINAL_MIN = 1
ORDINAL_MAX = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _normalize_ordinal(level: Optional[int]) -> float:
    if level is None:
        return 0.0
    return _clamp(level, ORDINAL_MIN, ORDINAL_MAX) / ORDINAL_MAX


def hours_waited(item: WorkItem, now: datetime) -> float:
    """Elapsed hours since the ticket was created, floored at 0."""
    if item.created_at is None:
        return 0.0
    elapsed = (_as_utc(now) - item.created_at).total_seconds() / 3600.0
    return max(elapsed, 0.0)


def normalized_factors(item: WorkItem, config: PriorityConfig, now: datetime) -> dict[str, float]:
    """The four factors in [0, 1], before weighting."""
    value = item.historical_customer_value if math.isfinite(item.historical_customer_value) else 0.0
    return {
        "urgency": _normalize_ordinal(item.urgency_level),
        "wait_time": min(hours_waited(item, now) / config.wait_time_cap_hours, 1.0),
        "historical_value": min(max(value, 0.0) / config.value_reference, 1.0),
        "technical_complexity": _normalize_ordinal(item.technical_complexity),
    }


def score(item: WorkItem, config: PriorityConfig, now: Optional[datetime] = None) -> ScoreResult:
    """Score one item. Deterministic for a fixed (item, config, now)."""
    if now is None:
        now = utc_now()
    factors = normalized_factors(item, config, now)
    weights = config.weights
    contributions = {
        "urgency": weights.urgency * factors["urgency"],
        "wait_time": weights.wait_time * factors["wait_time"],
        "historical_value": weights.historical_value * factors["historical_value"],
        "technical_complexity": weights.technical_complexity * factors["technical_complexity"],
    }
    bonus, matched = rule_bonus(config.rules, item)
    total = (
        contributions["urgency"]
        + contributions["wait_time"]
        + contributions["historical_value"]
        + contributions["technical_complexity"]
        + bonus
    )
    if not math.isfinite(total):
        raise ComputationError(f"Non-finite score {total!r} for work item {item.id}")
    return ScoreResult(
        total=total,
        breakdown=ScoreBreakdown(**contributions, rule_bonus=bonus, matched_rules=matched),
    )


def evaluate(
    items: Iterable[WorkItem],
    config: PriorityConfig,
    now: Optional[datetime] = None,
) -> list[ScoredItem]:
    """Score every item against one instant and return them in priority order."""
    if now is None:
        now = utc_now()
    scored = []
    for item in items:
        result = score(item, config, now)
        scored.append(ScoredItem(item=item, score=result.total, breakdown=result.breakdown))
    return sort_scored(scored)
