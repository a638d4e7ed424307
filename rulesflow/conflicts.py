from __future__ import annotations

"""Static conflict analysis over prioritized, field-based rules.

Every unordered pair of rules is compared field by field. A pair is reported
as ``shadow`` when the lower-priority rule can never match anything the
higher-priority rule does not (at equal priority, when either rule covers the
other); otherwise as ``contradiction`` for each pair of mutually exclusive
conditions; otherwise as ``overlap`` for each pair of conditions that can
match the same value.

Condition groups are flattened to their leaves before comparison, so OR
groups are treated as if every branch applied at once.
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Literal, Optional, Tuple, Union

from pydantic import BaseModel

from rulesflow.conditions import (
    STRING_OPERATORS,
    Condition,
    Rule,
    RuleSet,
    contains_value,
    flatten_conditions,
    format_value,
    group_by_field,
    to_number,
    values_equal,
)

logger = logging.getLogger("rulesflow.conflicts")

ConflictType = Literal["shadow", "contradiction", "overlap"]
Severity = Literal["low", "medium", "high"]

OPEN_BOUND_EPSILON = 0.0001

SEVERITY_BY_TYPE: Dict[str, Severity] = {
    "shadow": "high",
    "contradiction": "medium",
    "overlap": "low",
}


class RuleRef(BaseModel):
    id: str
    name: str


class ConflictReport(BaseModel):
    """One detected conflict between two rules."""

    rule1: RuleRef
    rule2: RuleRef
    type: ConflictType
    description: str
    severity: Severity


@dataclass(frozen=True)
class ParsedRule:
    """Rule reduced to what the analyzer needs: identity, priority and leaves."""

    id: str
    name: str
    priority: int
    conditions: Tuple[Condition, ...]

    @property
    def ref(self) -> RuleRef:
        return RuleRef(id=self.id, name=self.name)

    def by_field(self) -> Dict[str, list[Condition]]:
        return group_by_field(self.conditions)


def _priority(value: Any) -> int:
    number = to_number(value)
    if number is None or not math.isfinite(number):
        return 0
    return int(number)


def parse_rule(rule: Union[Rule, Dict[str, Any]]) -> ParsedRule:
    """Flatten a rule model or a raw rule dict."""

    if isinstance(rule, Rule):
        return ParsedRule(rule.id, rule.name, rule.priority, tuple(flatten_conditions(rule.conditions)))
    conditions = rule.get("conditions")
    if isinstance(conditions, str):
        try:
            conditions = json.loads(conditions)
        except ValueError:
            conditions = None
    return ParsedRule(
        id=str(rule.get("id", "")),
        name=str(rule.get("name", "")),
        priority=_priority(rule.get("priority")),
        conditions=tuple(flatten_conditions(conditions)),
    )


def _pair(value: Any) -> Optional[Tuple[float, float]]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    low, high = to_number(value[0]), to_number(value[1])
    if low is None or high is None:
        return None
    return low, high


def _compare(a: Any, b: Any, check) -> bool:
    left, right = to_number(a), to_number(b)
    if left is None or right is None:
        return False
    return check(left, right)


def value_in_range(value: Any, condition: Condition) -> bool:
    """Whether a single value satisfies a range or membership condition."""

    operator = condition.operator
    if operator == "greaterThan":
        return _compare(value, condition.value, lambda v, c: v > c)
    if operator == "greaterThanOrEqual":
        return _compare(value, condition.value, lambda v, c: v >= c)
    if operator == "lessThan":
        return _compare(value, condition.value, lambda v, c: v < c)
    if operator == "lessThanOrEqual":
        return _compare(value, condition.value, lambda v, c: v <= c)
    if operator == "between":
        bounds, number = _pair(condition.value), to_number(value)
        return bounds is not None and number is not None and bounds[0] <= number <= bounds[1]
    if operator == "in":
        return contains_value(condition.value, value)
    return False


def numeric_envelope(condition: Condition) -> Optional[Tuple[float, float]]:
    """Closed ``(min, max)`` interval approximating a numeric condition."""

    if condition.operator == "between":
        return _pair(condition.value)
    number = to_number(condition.value)
    if number is None:
        return None
    if condition.operator == "greaterThan":
        return number + OPEN_BOUND_EPSILON, math.inf
    if condition.operator == "greaterThanOrEqual":
        return number, math.inf
    if condition.operator == "lessThan":
        return -math.inf, number - OPEN_BOUND_EPSILON
    if condition.operator == "lessThanOrEqual":
        return -math.inf, number
    if condition.operator == "equals":
        return number, number
    return None


def is_subset_condition(a: Condition, b: Condition) -> bool:
    """Whether every value matching ``a`` also matches ``b``."""

    if a.field != b.field:
        return False
    if a.operator == b.operator and values_equal(a.value, b.value):
        return True
    if a.operator == "equals":
        return value_in_range(a.value, b)
    if a.operator == "between" and b.operator == "between":
        inner, outer = _pair(a.value), _pair(b.value)
        return inner is not None and outer is not None and inner[0] >= outer[0] and inner[1] <= outer[1]
    if a.operator == "in" and b.operator == "in":
        if not isinstance(a.value, (list, tuple)) or not isinstance(b.value, (list, tuple)):
            return False
        return all(contains_value(b.value, item) for item in a.value)
    return False


# (lower-bound operator, upper-bound operator) -> exclusive when lower vs upper
_BOUND_EXCLUSION = {
    ("greaterThan", "lessThan"): lambda low, high: low >= high,
    ("greaterThanOrEqual", "lessThan"): lambda low, high: low >= high,
    ("greaterThan", "lessThanOrEqual"): lambda low, high: low >= high,
    ("greaterThanOrEqual", "lessThanOrEqual"): lambda low, high: low > high,
}


def are_mutually_exclusive(a: Condition, b: Condition) -> bool:
    """Whether no single value can satisfy both conditions."""

    ops = {a.operator, b.operator}
    if a.operator == "equals" and b.operator == "equals":
        return not values_equal(a.value, b.value)
    if ops == {"equals", "notEquals"}:
        return values_equal(a.value, b.value)

    if (a.operator, b.operator) in _BOUND_EXCLUSION:
        return _compare(a.value, b.value, _BOUND_EXCLUSION[(a.operator, b.operator)])
    if (b.operator, a.operator) in _BOUND_EXCLUSION:
        return _compare(b.value, a.value, _BOUND_EXCLUSION[(b.operator, a.operator)])

    if a.operator == "between" and b.operator == "between":
        first, second = _pair(a.value), _pair(b.value)
        if first is None or second is None:
            return False
        return first[1] < second[0] or second[1] < first[0]

    if a.operator == "in" and b.operator == "in":
        if not isinstance(a.value, (list, tuple)) or not isinstance(b.value, (list, tuple)):
            return False
        return not any(contains_value(b.value, item) for item in a.value)

    return ops == {"isNull", "isNotNull"}


def ranges_overlap(a: Condition, b: Condition) -> bool:
    """Whether some value could satisfy both conditions."""

    if a.operator == b.operator and values_equal(a.value, b.value):
        return True
    if a.operator == "equals" and value_in_range(a.value, b):
        return True
    if b.operator == "equals" and value_in_range(b.value, a):
        return True

    first, second = numeric_envelope(a), numeric_envelope(b)
    if first is not None and second is not None:
        return first[0] <= second[1] and second[0] <= first[1]

    if a.operator == "in" and b.operator == "in":
        if not isinstance(a.value, (list, tuple)) or not isinstance(b.value, (list, tuple)):
            return False
        return any(contains_value(b.value, item) for item in a.value)

    # Two string predicates on one field can plausibly match the same text.
    return a.operator in STRING_OPERATORS and b.operator in STRING_OPERATORS


def _describe(condition: Condition) -> str:
    return f"{condition.operator}({format_value(condition.value)})"


def _is_shadowed(lower: ParsedRule, higher: ParsedRule) -> bool:
    lower_fields, higher_fields = lower.by_field(), higher.by_field()
    if not lower_fields or any(field not in higher_fields for field in lower_fields):
        return False
    return all(
        any(is_subset_condition(lc, hc) for hc in higher_fields[field])
        for field, conditions in lower_fields.items()
        for lc in conditions
    )


def _shadow_report(covering: ParsedRule, covered: ParsedRule) -> ConflictReport:
    return ConflictReport(
        rule1=covering.ref,
        rule2=covered.ref,
        type="shadow",
        severity=SEVERITY_BY_TYPE["shadow"],
        description=(
            f'Rule "{covered.name}" (priority {covered.priority}) is shadowed by '
            f'"{covering.name}" (priority {covering.priority}); the covering '
            "rule's conditions are a superset, so the shadowed rule may never fire."
        ),
    )


def detect_conflicts(rule_a: ParsedRule, rule_b: ParsedRule) -> list[ConflictReport]:
    """Compare one pair of rules and return its conflicts."""

    fields_a, fields_b = rule_a.by_field(), rule_b.by_field()
    shared = [field for field in fields_a if field in fields_b]
    if not shared:
        return []

    if rule_a.priority == rule_b.priority:
        first, second = sorted((rule_a, rule_b), key=lambda rule: rule.id)
        candidates = [(first, second), (second, first)]
    elif rule_a.priority > rule_b.priority:
        candidates = [(rule_a, rule_b)]
    else:
        candidates = [(rule_b, rule_a)]
    # At equal priority either rule may cover the other; mutual cover goes to the lower id.
    for covering, covered in candidates:
        if _is_shadowed(covered, covering):
            return [_shadow_report(covering, covered)]

    conflicts: list[ConflictReport] = []
    for field in shared:
        for ca in fields_a[field]:
            for cb in fields_b[field]:
                if are_mutually_exclusive(ca, cb):
                    conflicts.append(
                        ConflictReport(
                            rule1=rule_a.ref,
                            rule2=rule_b.ref,
                            type="contradiction",
                            severity=SEVERITY_BY_TYPE["contradiction"],
                            description=(
                                f'Rules target field "{field}" with contradictory conditions: '
                                f'"{rule_a.name}" uses {_describe(ca)} '
                                f'while "{rule_b.name}" uses {_describe(cb)}.'
                            ),
                        )
                    )
    if conflicts:
        return conflicts

    for field in shared:
        for ca in fields_a[field]:
            for cb in fields_b[field]:
                if ranges_overlap(ca, cb):
                    conflicts.append(
                        ConflictReport(
                            rule1=rule_a.ref,
                            rule2=rule_b.ref,
                            type="overlap",
                            severity=SEVERITY_BY_TYPE["overlap"],
                            description=(
                                f'Both rules have conditions on field "{field}" that could match '
                                f'the same input: "{rule_a.name}" uses {_describe(ca)}, '
                                f'"{rule_b.name}" uses {_describe(cb)}.'
                            ),
                        )
                    )
    return conflicts


class ConflictAnalyzer:
    """Pairwise conflict detection over a list of rules."""

    def analyze(self, rules: Iterable[Union[Rule, Dict[str, Any]]]) -> list[ConflictReport]:
        """Return conflicts for every unordered pair, in ascending pair order.

        Disabled rules are ignored; the remainder is ordered by descending
        priority, keeping the supplied order between equal priorities.
        """

        parsed = [
            parse_rule(rule)
            for rule in rules
            if (rule.enabled if isinstance(rule, Rule) else rule.get("enabled", True))
        ]
        parsed.sort(key=lambda rule: rule.priority, reverse=True)

        conflicts: list[ConflictReport] = []
        for i, rule_a in enumerate(parsed):
            for rule_b in parsed[i + 1:]:
                conflicts.extend(detect_conflicts(rule_a, rule_b))
        logger.debug("Analyzed %d rule(s), found %d conflict(s)", len(parsed), len(conflicts))
        return conflicts

    def analyze_rule_set(self, rule_set: RuleSet) -> list[ConflictReport]:
        """Analyze the rules of ``rule_set``."""

        return self.analyze(rule_set.rules)


__all__ = [
    "ConflictAnalyzer",
    "ConflictReport",
    "ConflictType",
    "OPEN_BOUND_EPSILON",
    "ParsedRule",
    "RuleRef",
    "Severity",
    "are_mutually_exclusive",
    "detect_conflicts",
    "is_subset_condition",
    "numeric_envelope",
    "parse_rule",
    "ranges_overlap",
    "value_in_range",
]
