from __future__ import annotations

"""Unit tests for static rule conflict analysis."""

import json

import pytest

from rulesflow.conditions import Condition, Rule, RuleSet
from rulesflow.conflicts import (
    ConflictAnalyzer,
    are_mutually_exclusive,
    is_subset_condition,
    numeric_envelope,
    parse_rule,
    ranges_overlap,
)


def make_rule(rule_id: str, priority: int, *conditions: dict, logic: str = "AND", **extra) -> Rule:
    return Rule(
        id=rule_id,
        name=rule_id.upper(),
        priority=priority,
        conditions={"logic": logic, "conditions": list(conditions)},
        **extra,
    )


def cond(field: str, operator: str, value=None) -> dict:
    return {"field": field, "operator": operator, "value": value}


@pytest.fixture
def analyzer() -> ConflictAnalyzer:
    return ConflictAnalyzer()


def test_shadow_subsumption(analyzer: ConflictAnalyzer) -> None:
    high = make_rule("h", 10, cond("status", "equals", "active"))
    low = make_rule("l", 5, cond("status", "equals", "active"))

    conflicts = analyzer.analyze([high, low])
    assert len(conflicts) == 1
    conflict = conflicts[0]
    assert conflict.type == "shadow"
    assert conflict.severity == "high"
    assert conflict.rule1.id == "h"
    assert conflict.rule2.id == "l"


def test_shadow_names_higher_priority_rule_regardless_of_input_order(analyzer: ConflictAnalyzer) -> None:
    high = make_rule("h", 10, cond("age", "greaterThan", 18))
    low = make_rule("l", 5, cond("age", "equals", 30))

    conflicts = analyzer.analyze([low, high])
    assert [(c.type, c.rule1.id, c.rule2.id) for c in conflicts] == [("shadow", "h", "l")]


def test_range_in_lower_rule_is_not_shadowed_by_equals(analyzer: ConflictAnalyzer) -> None:
    high = make_rule("h", 10, cond("age", "equals", 30))
    low = make_rule("l", 5, cond("age", "greaterThan", 18))

    conflicts = analyzer.analyze([high, low])
    assert [c.type for c in conflicts] == ["overlap"]
    assert conflicts[0].severity == "low"


def test_extra_field_on_lower_rule_prevents_shadow(analyzer: ConflictAnalyzer) -> None:
    high = make_rule("h", 10, cond("status", "equals", "active"))
    low = make_rule("l", 5, cond("status", "equals", "active"), cond("country", "equals", "DE"))

    assert [c.type for c in analyzer.analyze([high, low])] == ["overlap"]


def test_contradiction_determinism(analyzer: ConflictAnalyzer) -> None:
    older = make_rule("a", 1, cond("age", "greaterThan", 30))
    younger = make_rule("b", 1, cond("age", "lessThan", 20))
    middle = make_rule("c", 1, cond("age", "lessThan", 50))

    for _ in range(3):
        contradiction = analyzer.analyze([older, younger])
        assert [(c.type, c.severity) for c in contradiction] == [("contradiction", "medium")]

        overlap = analyzer.analyze([older, middle])
        assert [c.type for c in overlap] == ["overlap"]


def test_contradictions_span_all_shared_fields(analyzer: ConflictAnalyzer) -> None:
    first = make_rule("a", 1, cond("age", "greaterThan", 30), cond("tier", "equals", "gold"))
    second = make_rule("b", 1, cond("age", "lessThan", 20), cond("tier", "equals", "silver"))

    conflicts = analyzer.analyze([first, second])
    assert [c.type for c in conflicts] == ["contradiction", "contradiction"]
    assert '"age"' in conflicts[0].description
    assert '"tier"' in conflicts[1].description


def test_overlap_skipped_when_contradiction_found(analyzer: ConflictAnalyzer) -> None:
    first = make_rule("a", 1, cond("age", "greaterThan", 30), cond("name", "contains", "x"))
    second = make_rule("b", 1, cond("age", "lessThan", 20), cond("name", "startsWith", "y"))

    assert [c.type for c in analyzer.analyze([first, second])] == ["contradiction"]


def test_symmetry_with_distinct_priorities(analyzer: ConflictAnalyzer) -> None:
    rule_a = make_rule("a", 10, cond("age", "greaterThan", 30))
    rule_b = make_rule("b", 3, cond("age", "lessThan", 20))

    forward = [c.model_dump() for c in analyzer.analyze([rule_a, rule_b])]
    backward = [c.model_dump() for c in analyzer.analyze([rule_b, rule_a])]
    assert forward == backward


def test_symmetry_with_equal_priorities_swaps_rules(analyzer: ConflictAnalyzer) -> None:
    rule_a = make_rule("a", 1, cond("score", "between", [0, 10]))
    rule_b = make_rule("b", 1, cond("score", "between", [20, 30]))

    forward = analyzer.analyze([rule_a, rule_b])
    backward = analyzer.analyze([rule_b, rule_a])
    assert [(c.type, c.severity) for c in forward] == [(c.type, c.severity) for c in backward]
    assert [(c.rule1.id, c.rule2.id) for c in forward] == [("a", "b")]
    assert [(c.rule1.id, c.rule2.id) for c in backward] == [("b", "a")]


def test_equal_priority_shadow_is_found_in_either_order(analyzer: ConflictAnalyzer) -> None:
    narrow = make_rule("a", 1, cond("x", "equals", 1))
    wide = make_rule("b", 1, cond("x", "in", [1, 2]))

    forward = [(c.type, c.rule1.id, c.rule2.id) for c in analyzer.analyze([narrow, wide])]
    backward = [(c.type, c.rule1.id, c.rule2.id) for c in analyzer.analyze([wide, narrow])]
    assert forward == backward == [("shadow", "b", "a")]


def test_identical_equal_priority_rules_report_lower_id_as_covering(analyzer: ConflictAnalyzer) -> None:
    rule_a = make_rule("a", 2, cond("status", "equals", "active"))
    rule_b = make_rule("b", 2, cond("status", "equals", "active"))

    forward = [c.model_dump() for c in analyzer.analyze([rule_a, rule_b])]
    backward = [c.model_dump() for c in analyzer.analyze([rule_b, rule_a])]
    assert forward == backward
    assert (forward[0]["rule1"]["id"], forward[0]["rule2"]["id"]) == ("a", "b")


def test_idempotence(analyzer: ConflictAnalyzer) -> None:
    rules = [
        make_rule("a", 5, cond("age", "greaterThan", 30), cond("tier", "in", ["gold", "silver"])),
        make_rule("b", 5, cond("age", "lessThan", 50), cond("tier", "in", ["bronze"])),
        make_rule("c", 1, cond("age", "equals", 40)),
    ]

    first = json.dumps([c.model_dump() for c in analyzer.analyze(rules)])
    second = json.dumps([c.model_dump() for c in analyzer.analyze(rules)])
    assert first == second


def test_pairs_without_shared_fields_produce_nothing(analyzer: ConflictAnalyzer) -> None:
    rule_a = make_rule("a", 1, cond("age", "greaterThan", 30))
    rule_b = make_rule("b", 1, cond("country", "equals", "DE"))
    assert analyzer.analyze([rule_a, rule_b]) == []


def test_empty_condition_trees_contribute_nothing(analyzer: ConflictAnalyzer) -> None:
    empty = Rule(id="e", name="Empty", priority=9)
    rule_b = make_rule("b", 1, cond("country", "equals", "DE"))
    assert analyzer.analyze([empty, rule_b]) == []


def test_disabled_rules_are_ignored(analyzer: ConflictAnalyzer) -> None:
    active = make_rule("a", 1, cond("age", "greaterThan", 30))
    disabled = make_rule("b", 1, cond("age", "lessThan", 20), enabled=False)
    assert analyzer.analyze([active, disabled]) == []


def test_or_groups_are_flattened(analyzer: ConflictAnalyzer) -> None:
    either = make_rule("a", 1, cond("age", "lessThan", 20), cond("age", "greaterThan", 60), logic="OR")
    adult = make_rule("b", 1, cond("age", "greaterThanOrEqual", 30))

    conflicts = analyzer.analyze([either, adult])
    # "age < 20 OR age > 60" is read as both, so it contradicts "age >= 30".
    assert [c.type for c in conflicts] == ["contradiction"]


def test_pair_iteration_order(analyzer: ConflictAnalyzer) -> None:
    rules = [
        make_rule("a", 3, cond("x", "equals", 1)),
        make_rule("b", 2, cond("x", "equals", 2)),
        make_rule("c", 1, cond("x", "equals", 3)),
    ]
    pairs = [(c.rule1.id, c.rule2.id) for c in analyzer.analyze(rules)]
    assert pairs == [("a", "b"), ("a", "c"), ("b", "c")]


def test_analyze_accepts_raw_dicts_with_serialized_conditions(analyzer: ConflictAnalyzer) -> None:
    rules = [
        {
            "id": "a",
            "name": "A",
            "priority": 2,
            "conditions": json.dumps({"logic": "AND", "conditions": [cond("x", "isNull")]}),
        },
        {"id": "b", "name": "B", "priority": 1, "conditions": {"conditions": [cond("x", "isNotNull")]}},
        {"id": "c", "name": "C", "priority": 0, "conditions": "not json"},
    ]
    conflicts = analyzer.analyze(rules)
    assert [(c.type, c.rule1.id, c.rule2.id) for c in conflicts] == [("contradiction", "a", "b")]


def test_analyze_rule_set(analyzer: ConflictAnalyzer) -> None:
    rule_set = RuleSet(
        id="rs",
        name="Pricing",
        rules=[
            make_rule("h", 10, cond("status", "equals", "active")).model_dump(),
            make_rule("l", 5, cond("status", "equals", "active")).model_dump(),
        ],
    )
    assert [c.type for c in analyzer.analyze_rule_set(rule_set)] == ["shadow"]


def test_report_external_shape(analyzer: ConflictAnalyzer) -> None:
    rule_a = make_rule("a", 1, cond("x", "equals", 1))
    rule_b = make_rule("b", 1, cond("x", "equals", 2))

    payload = analyzer.analyze([rule_a, rule_b])[0].model_dump()
    assert set(payload) == {"rule1", "rule2", "type", "description", "severity"}
    assert payload["rule1"] == {"id": "a", "name": "A"}


def test_parse_rule_flattens_nested_groups() -> None:
    rule = make_rule(
        "a",
        1,
        cond("x", "equals", 1),
        {"logic": "or", "conditions": [cond("y", "in", [1, 2]), cond("z", "isNull")]},
    )
    parsed = parse_rule(rule)
    assert [c.field for c in parsed.conditions] == ["x", "y", "z"]
    assert list(parsed.by_field()) == ["x", "y", "z"]


@pytest.mark.parametrize(("raw", "expected"), [("high", 0), (None, 0), ("7", 7), (3.9, 3), (float("nan"), 0)])
def test_parse_rule_reads_priority_permissively(raw, expected: int) -> None:
    parsed = parse_rule({"id": "r", "name": "R", "priority": raw, "conditions": {"field": "x", "operator": "equals", "value": 1}})
    assert parsed.priority == expected
    assert [c.field for c in parsed.conditions] == ["x"]


def test_analyze_accepts_dict_rules_with_non_numeric_priority(analyzer: ConflictAnalyzer) -> None:
    rules = [
        {"id": "a", "name": "A", "priority": "high", "conditions": {"field": "x", "operator": "greaterThan", "value": 5}},
        {"id": "b", "name": "B", "priority": 0, "conditions": {"field": "x", "operator": "lessThan", "value": 3}},
    ]
    assert [c.type for c in analyzer.analyze(rules)] == ["contradiction"]


@pytest.mark.parametrize(
    ("a", "b", "expected"),
    [
        (("x", "greaterThanOrEqual", 10), ("x", "lessThan", 10), True),
        (("x", "greaterThan", 10), ("x", "lessThanOrEqual", 10), True),
        (("x", "greaterThan", 10), ("x", "lessThan", 10), True),
        (("x", "greaterThanOrEqual", 10), ("x", "lessThanOrEqual", 10), False),
        (("x", "lessThan", 5), ("x", "greaterThan", 3), False),
        (("x", "equals", "a"), ("x", "notEquals", "a"), True),
        (("x", "equals", "a"), ("x", "notEquals", "b"), False),
        (("x", "in", [1, 2]), ("x", "in", [3]), True),
        (("x", "in", [1, 2]), ("x", "in", [2, 3]), False),
        (("x", "between", [0, 5]), ("x", "between", [6, 9]), True),
        (("x", "between", [0, 5]), ("x", "between", [5, 9]), False),
        (("x", "isNull", None), ("x", "isNotNull", None), True),
    ],
)
def test_are_mutually_exclusive(a: tuple, b: tuple, expected: bool) -> None:
    first, second = Condition(field=a[0], operator=a[1], value=a[2]), Condition(field=b[0], operator=b[1], value=b[2])
    assert are_mutually_exclusive(first, second) is expected
    assert are_mutually_exclusive(second, first) is expected


def test_is_subset_condition() -> None:
    assert is_subset_condition(Condition(field="x", operator="equals", value=5), Condition(field="x", operator="between", value=[1, 10]))
    assert is_subset_condition(Condition(field="x", operator="equals", value="b"), Condition(field="x", operator="in", value=["a", "b"]))
    assert is_subset_condition(Condition(field="x", operator="between", value=[2, 3]), Condition(field="x", operator="between", value=[1, 10]))
    assert is_subset_condition(Condition(field="x", operator="in", value=[1]), Condition(field="x", operator="in", value=[1, 2]))
    assert not is_subset_condition(Condition(field="x", operator="in", value=[1, 3]), Condition(field="x", operator="in", value=[1, 2]))
    assert not is_subset_condition(Condition(field="x", operator="equals", value=1), Condition(field="y", operator="equals", value=1))


def test_numeric_envelope_uses_epsilon_for_open_bounds() -> None:
    low, high = numeric_envelope(Condition(field="x", operator="greaterThan", value=10))
    assert low == pytest.approx(10.0001)
    assert high == float("inf")
    assert numeric_envelope(Condition(field="x", operator="contains", value="a")) is None


def test_string_predicates_overlap_conservatively() -> None:
    assert ranges_overlap(
        Condition(field="name", operator="contains", value="a"),
        Condition(field="name", operator="endsWith", value="z"),
    )
    assert not ranges_overlap(
        Condition(field="x", operator="greaterThan", value=10),
        Condition(field="x", operator="lessThan", value=10),
    )
