"""Unit tests for rule matching and rule bonuses."""

import pytest

from priority_engine.models import PriorityRule, RuleCondition, RuleEffect, Stage
from priority_engine.rules import (
    StageMatch,
    TextContains,
    compile_condition,
    matches,
    rule_bonus,
)
from priority_engine.scoring import score

from conftest import NOW


def _rule(rule_id, bonus, *, stage=None, text=None):
    return PriorityRule(
        id=rule_id,
        name=f"Rule {rule_id}",
        condition=RuleCondition(stage=stage, issue_includes=text),
        effect=RuleEffect(priority_bonus=bonus),
    )


class TestPredicates:
    def test_compile_stage_only(self):
        assert compile_condition(RuleCondition(stage=Stage.PAUSED)) == [StageMatch(Stage.PAUSED)]

    def test_compile_both(self):
        predicates = compile_condition(RuleCondition(stage=Stage.READY, issue_includes="batería"))
        assert predicates == [StageMatch(Stage.READY), TextContains("batería")]

    def test_text_contains_is_case_insensitive(self, make_item):
        item = make_item(issue="PANTALLA completamente agrietada")
        assert TextContains("pantalla")(item)
        assert TextContains("Agrietada")(item)
        assert not TextContains("batería")(item)

    def test_stage_match(self, make_item):
        assert StageMatch(Stage.DIAGNOSING)(make_item(stage=Stage.DIAGNOSING))
        assert not StageMatch(Stage.DIAGNOSING)(make_item(stage=Stage.RECEIVED))


class TestMatches:
    def test_all_specified_fields_must_hold(self, make_item):
        condition = RuleCondition(stage=Stage.PAUSED, issue_includes="pantalla")
        assert matches(condition, make_item(stage=Stage.PAUSED, issue="Pantalla rota"))
        assert not matches(condition, make_item(stage=Stage.RECEIVED, issue="Pantalla rota"))
        assert not matches(condition, make_item(stage=Stage.PAUSED, issue="No enciende"))

    def test_omitted_field_is_wildcard(self, make_item):
        condition = RuleCondition(issue_includes="no enciende")
        for stage in (Stage.RECEIVED, Stage.REPAIRING, Stage.READY):
            assert matches(condition, make_item(stage=stage, issue="El equipo no enciende"))

    def test_empty_condition_is_rejected(self):
        with pytest.raises(ValueError):
            RuleCondition()


class TestBonuses:
    def test_all_matching_rules_add_up(self, make_item):
        rules = [
            _rule("paused", 0.3, stage=Stage.PAUSED),
            _rule("screen", 0.2, text="pantalla"),
            _rule("water", 1.0, text="agua"),
        ]
        bonus, matched = rule_bonus(rules, make_item(stage=Stage.PAUSED, issue="pantalla rota"))
        assert bonus == pytest.approx(0.5)
        assert matched == ("paused", "screen")

    def test_negative_bonus(self, make_item):
        bonus, _ = rule_bonus([_rule("cosmetic", -0.25, text="rayón")], make_item(issue="Rayón en carcasa"))
        assert bonus == pytest.approx(-0.25)

    def test_rule_order_does_not_change_total(self, make_item, reference_config):
        rules = (_rule("a", 0.1, stage=Stage.RECEIVED), _rule("b", 0.7, text="pantalla"))
        item = make_item(issue="pantalla")
        forward = reference_config.model_copy(update={"rules": rules})
        backward = reference_config.model_copy(update={"rules": rules[::-1]})
        assert score(item, forward, NOW).total == pytest.approx(score(item, backward, NOW).total)

    def test_removing_rule_subtracts_exactly_its_bonus(self, make_item, reference_config):
        removed = _rule("diag", 0.35, stage=Stage.DIAGNOSING)
        keep = _rule("screen", 0.1, text="pantalla")
        with_rule = reference_config.model_copy(update={"rules": (keep, removed)})
        without_rule = reference_config.model_copy(update={"rules": (keep,)})

        matching = make_item(stage=Stage.DIAGNOSING, hours_ago=20)
        delta = score(matching, without_rule, NOW).total - score(matching, with_rule, NOW).total
        assert delta == pytest.approx(-removed.effect.priority_bonus)

        other = make_item(stage=Stage.REPAIRING, hours_ago=20)
        assert score(other, without_rule, NOW).total == score(other, with_rule, NOW).total
