"""Unit tests for the scoring function and evaluate()."""

from datetime import timedelta

import pytest

from priority_engine.models import (
    DEFAULT_CONFIG,
    PriorityRule,
    RuleCondition,
    RuleEffect,
    Stage,
    WorkItem,
)
from priority_engine.scoring import evaluate, hours_waited, normalized_factors, score

from conftest import NOW


class TestReferenceScenario:
    def test_item_a_total(self, make_item, reference_config):
        a = make_item("A", urgency=5, hours_ago=0, complexity=1, value=0)
        assert score(a, reference_config, NOW).total == pytest.approx(0.42)

    def test_item_b_wait_is_capped(self, make_item, reference_config):
        b = make_item("B", urgency=1, hours_ago=100, complexity=1, value=0)
        result = score(b, reference_config, NOW)
        assert result.breakdown.wait_time == pytest.approx(0.3)
        assert result.total == pytest.approx(0.40)

    def test_a_before_b(self, make_item, reference_config):
        a = make_item("A", urgency=5, hours_ago=0, complexity=1, value=0)
        b = make_item("B", urgency=1, hours_ago=100, complexity=1, value=0)
        ordered = evaluate([b, a], reference_config, NOW)
        assert [s.item.id for s in ordered] == ["A", "B"]


class TestFactors:
    def test_factors_lie_in_unit_interval(self, make_item, reference_config):
        item = make_item(urgency=9, complexity=-2, hours_ago=5000, value=5_000_000)
        factors = normalized_factors(item, reference_config, NOW)
        assert all(0.0 <= v <= 1.0 for v in factors.values())

    def test_out_of_range_ordinals_are_clamped(self, make_item, reference_config):
        high = score(make_item(urgency=42), reference_config, NOW)
        top = score(make_item(urgency=5), reference_config, NOW)
        low = score(make_item(urgency=0), reference_config, NOW)
        bottom = score(make_item(urgency=1), reference_config, NOW)
        assert high.total == top.total
        assert low.total == bottom.total

    def test_future_created_at_counts_as_zero_wait(self, make_item):
        item = make_item(hours_ago=-3)
        assert hours_waited(item, NOW) == 0.0

    def test_value_saturates_at_reference(self, make_item, reference_config):
        at_ref = score(make_item(value=1_000_000), reference_config, NOW)
        above = score(make_item(value=9_000_000), reference_config, NOW)
        assert at_ref.breakdown.historical_value == pytest.approx(0.2)
        assert above.total == at_ref.total

    def test_missing_optional_fields_contribute_nothing(self, reference_config):
        item = WorkItem(id="bare")
        result = score(item, reference_config, NOW)
        assert result.total == 0.0
        assert result.breakdown.urgency == 0.0
        assert result.breakdown.wait_time == 0.0

    def test_unknown_customer_value_defaults_to_zero(self):
        item = WorkItem.model_validate({"id": "X", "historicalCustomerValue": None})
        assert item.historical_customer_value == 0.0

    def test_naive_now_is_treated_as_utc(self, make_item, reference_config):
        item = make_item(hours_ago=36)
        aware = score(item, reference_config, NOW)
        naive = score(item, reference_config, NOW.replace(tzinfo=None))
        assert aware.total == naive.total

    def test_breakdown_sums_to_total(self, make_item, reference_config):
        rule = PriorityRule(
            id="vip",
            name="Screen jobs",
            condition=RuleCondition(issue_includes="pantalla"),
            effect=RuleEffect(priority_bonus=0.5),
        )
        config = reference_config.model_copy(update={"rules": (rule,)})
        result = score(make_item(urgency=4, hours_ago=10, value=300), config, NOW)
        b = result.breakdown
        parts = b.urgency + b.wait_time + b.historical_value + b.technical_complexity + b.rule_bonus
        assert result.total == pytest.approx(parts)
        assert b.matched_rules == ("vip",)


class TestProperties:
    def test_deterministic(self, make_item, reference_config):
        item = make_item(urgency=4, hours_ago=12, value=1234)
        first = score(item, reference_config, NOW)
        for _ in range(5):
            assert score(item, reference_config, NOW) == first

    def test_urgency_monotonic(self, make_item, reference_config):
        totals = [score(make_item(urgency=u), reference_config, NOW).total for u in range(1, 6)]
        assert totals == sorted(totals)
        assert totals[0] < totals[-1]

    def test_wait_time_monotonic_then_flat(self, make_item, reference_config):
        item = make_item(hours_ago=0)
        totals = [
            score(item, reference_config, NOW + timedelta(hours=h)).total
            for h in range(0, 200, 4)
        ]
        assert totals == sorted(totals)
        capped = [
            score(item, reference_config, NOW + timedelta(hours=h)).total
            for h in (72, 90, 500)
        ]
        assert capped[0] == capped[1] == capped[2]

    def test_item_is_not_mutated(self, make_item, reference_config):
        item = make_item(urgency=2)
        before = item.model_dump()
        evaluate([item], reference_config, NOW)
        assert item.model_dump() == before

    def test_evaluate_idempotent(self, make_item, reference_config):
        items = [
            make_item("a", urgency=3, hours_ago=5),
            make_item("b", urgency=3, hours_ago=5),
            make_item("c", urgency=5, hours_ago=1, stage=Stage.DIAGNOSING),
            make_item("d", urgency=1, hours_ago=80),
        ]
        assert evaluate(items, reference_config, NOW) == evaluate(items, reference_config, NOW)

    def test_default_config_scores(self, make_item):
        result = score(make_item(urgency=5, complexity=5, hours_ago=72, value=1000), DEFAULT_CONFIG, NOW)
        assert result.total == pytest.approx(1.0)
