from __future__ import annotations

"""Runtime semantics of rule condition operators."""

import re
from typing import Any, Callable, Dict

from rulesflow.conditions import ComparisonOperator, contains_value, to_number, values_equal


def _ordered(check: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def apply(actual: Any, expected: Any) -> bool:
        left, right = to_number(actual), to_number(expected)
        if left is None or right is None:
            return False
        return check(left, right)

    return apply


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, list):
        return contains_value(actual, expected)
    return False


def _between(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)) or len(expected) != 2:
        return False
    value, low, high = to_number(actual), to_number(expected[0]), to_number(expected[1])
    if value is None or low is None or high is None:
        return False
    return low <= value <= high


def _matches(actual: Any, expected: Any) -> bool:
    try:
        return re.search(str(expected), "" if actual is None else str(actual)) is not None
    except re.error:
        return False


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": values_equal,
    "notEquals": lambda actual, expected: not values_equal(actual, expected),
    "greaterThan": _ordered(lambda a, b: a > b),
    "greaterThanOrEqual": _ordered(lambda a, b: a >= b),
    "lessThan": _ordered(lambda a, b: a < b),
    "lessThanOrEqual": _ordered(lambda a, b: a <= b),
    "contains": _contains,
    "notContains": lambda actual, expected: not _contains(actual, expected)
    if isinstance(actual, (str, list))
    else True,
    "startsWith": lambda actual, expected: isinstance(actual, str) and actual.startswith(str(expected)),
    "endsWith": lambda actual, expected: isinstance(actual, str) and actual.endswith(str(expected)),
    "in": lambda actual, expected: contains_value(expected, actual),
    "notIn": lambda actual, expected: isinstance(expected, (list, tuple))
    and not contains_value(expected, actual),
    "between": _between,
    "isNull": lambda actual, expected: actual is None,
    "isNotNull": lambda actual, expected: actual is not None,
    "matches": _matches,
}


def evaluate_operator(actual: Any, operator: ComparisonOperator, expected: Any) -> bool:
    """Compare a resolved field value with a condition value."""

    check = OPERATORS.get(operator)
    if check is None:
        return False
    return bool(check(actual, expected))


__all__ = ["OPERATORS", "evaluate_operator"]
