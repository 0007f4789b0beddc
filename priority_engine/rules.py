"""
Rule evaluator: match PriorityRule conditions against work items.

A condition compiles to a list of typed predicates (StageMatch, TextContains).
It matches when every predicate holds; omitted sub-fields add no predicate.
All matching rules contribute their bonus (additive, order-independent).
"""

from dataclasses import dataclass
from typing import Iterable, Union

from priority_engine.models import RuleCondition, PriorityRule, Stage, WorkItem


@dataclass(frozen=True)
class StageMatch:
    """Ticket is currently in ``stage``."""

    stage: Stage

    def __call__(self, item: WorkItem) -> bool:
        return item.current_stage == self.stage


@dataclass(frozen=True)
class TextContains:
    """Case-insensitive substring test against the issue description."""

    needle: str

    def __call__(self, item: WorkItem) -> bool:
        return self.needle.casefold() in (item.issue_description or "").casefold()


Predicate = Union[StageMatch, TextContains]


def compile_condition(condition: RuleCondition) -> list[Predicate]:
    """Translate a condition document into its predicates."""
    predicates: list[Predicate] = []
    if condition.stage is not None:
        predicates.append(StageMatch(condition.stage))
    if condition.issue_includes:
        predicates.append(TextContains(condition.issue_includes))
    return predicates


def matches(condition: RuleCondition, item: WorkItem) -> bool:
    """True when every specified sub-field of the condition holds for the item."""
    return all(predicate(item) for predicate in compile_condition(condition))


def matching_rules(rules: Iterable[PriorityRule], item: WorkItem) -> list[PriorityRule]:
    """Rules whose condition matches the item, in config order."""
    return [rule for rule in rules if matches(rule.condition, item)]


def rule_bonus(rules: Iterable[PriorityRule], item: WorkItem) -> tuple[float, tuple[str, ...]]:
    """Sum of priorityBonus over all matching rules, plus the matched rule ids."""
    matched = matching_rules(rules, item)
    bonus = sum(rule.effect.priority_bonus for rule in matched)
    return float(bonus), tuple(rule.id for rule in matched)
