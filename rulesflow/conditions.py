from __future__ import annotations

"""Condition and rule models shared by rule execution and conflict analysis."""

import json
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator
from pydantic.alias_generators import to_camel

ComparisonOperator = Literal[
    "equals",
    "notEquals",
    "greaterThan",
    "greaterThanOrEqual",
    "lessThan",
    "lessThanOrEqual",
    "between",
    "in",
    "notIn",
    "contains",
    "notContains",
    "startsWith",
    "endsWith",
    "matches",
    "isNull",
    "isNotNull",
]
"""Field-level comparison operators understood by rules."""

LogicalOperator = Literal["AND", "OR"]
ActionType = Literal["SET", "APPEND", "INCREMENT", "DECREMENT", "CUSTOM"]

RANGE_OPERATORS = frozenset(
    {"greaterThan", "greaterThanOrEqual", "lessThan", "lessThanOrEqual", "between"}
)
STRING_OPERATORS = frozenset({"contains", "startsWith", "endsWith", "matches"})


class Condition(BaseModel):
    """Leaf predicate comparing the value at ``field`` with ``value``."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: ComparisonOperator
    value: Any = None


class ConditionGroup(BaseModel):
    """Boolean combinator over nested conditions and groups."""

    logic: LogicalOperator = "AND"
    conditions: List["ConditionNode"] = Field(default_factory=list)

    @field_validator("logic", mode="before")
    @classmethod
    def _normalize_logic(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value


# Leaves carry field/operator; anything else is a group.
def _condition_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "leaf" if "field" in value or "operator" in value else "group"
    return "group" if isinstance(value, ConditionGroup) else "leaf"


ConditionNode = Annotated[
    Union[Annotated[Condition, Tag("leaf")], Annotated[ConditionGroup, Tag("group")]],
    Discriminator(_condition_kind),
]

ConditionGroup.model_rebuild()


class Action(BaseModel):
    """Output mutation applied when a rule fires."""

    type: ActionType = "SET"
    field: str
    value: Any = None


class Rule(BaseModel):
    """Prioritized rule: a condition tree plus ordered actions."""

    id: str
    name: str
    priority: int = 0
    enabled: bool = True
    conditions: Optional[ConditionNode] = None
    actions: List[Action] = Field(default_factory=list)

    @field_validator("conditions", "actions", mode="before")
    @classmethod
    def _decode_json(cls, value: Any) -> Any:
        # Stored rules often carry their condition tree as serialized JSON.
        if isinstance(value, str):
            return json.loads(value) if value.strip() else None
        return value


HitPolicy = Literal["FIRST", "ALL", "COLLECT"]

WILDCARD_CELLS = ("", "*", None)


class DecisionTableColumn(BaseModel):
    """Condition or action column bound to a dotted field path."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str = ""
    field: str
    type: Literal["condition", "action"]
    operator: Optional[ComparisonOperator] = None
    action_type: Optional[ActionType] = None


class DecisionTableRow(BaseModel):
    """Cell values keyed by column id."""

    id: str
    values: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True


class DecisionTable(BaseModel):
    """Tabular rules: every matching row contributes its action cells."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str = ""
    description: Optional[str] = None
    columns: List[DecisionTableColumn] = Field(default_factory=list)
    rows: List[DecisionTableRow] = Field(default_factory=list)
    hit_policy: HitPolicy = "FIRST"

    def condition_columns(self) -> list[DecisionTableColumn]:
        return [column for column in self.columns if column.type == "condition"]

    def action_columns(self) -> list[DecisionTableColumn]:
        return [column for column in self.columns if column.type == "action"]


class RuleSet(BaseModel):
    """Named collection of rules and decision tables."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    rules: List[Rule] = Field(default_factory=list)
    decision_tables: List[DecisionTable] = Field(default_factory=list)

    @field_validator("decision_tables", mode="before")
    @classmethod
    def _decode_tables(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value) if value.strip() else []
        return value

    def active_rules(self) -> list[Rule]:
        """Return enabled rules sorted by descending priority."""

        return sorted(
            (rule for rule in self.rules if rule.enabled),
            key=lambda rule: rule.priority,
            reverse=True,
        )


def flatten_conditions(node: Any) -> list[Condition]:
    """Expand a condition tree into its leaf conditions.

    Combinators are discarded. Raw dicts are accepted so that partially
    valid trees still contribute whatever leaves they contain.
    """

    if node is None:
        return []
    if isinstance(node, Condition):
        return [node]
    if isinstance(node, ConditionGroup):
        children: Iterable[Any] = node.conditions
    elif isinstance(node, dict):
        if node.get("field") and node.get("operator"):
            try:
                return [Condition.model_validate(node)]
            except ValueError:
                return []
        children = node.get("conditions") or []
        if not isinstance(children, list):
            return []
    else:
        return []

    leaves: list[Condition] = []
    for child in children:
        leaves.extend(flatten_conditions(child))
    return leaves


def group_by_field(conditions: Iterable[Condition]) -> Dict[str, list[Condition]]:
    """Group leaf conditions by field, preserving first-seen order."""

    grouped: Dict[str, list[Condition]] = {}
    for condition in conditions:
        grouped.setdefault(condition.field, []).append(condition)
    return grouped


def values_equal(a: Any, b: Any) -> bool:
    """Strict deep equality: booleans never equal numbers."""

    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    if a is None or b is None:
        return a is None and b is None
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, (list, tuple)):
        if not isinstance(b, (list, tuple)) or len(a) != len(b):
            return False
        return all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict):
        if not isinstance(b, dict) or a.keys() != b.keys():
            return False
        return all(values_equal(a[key], b[key]) for key in a)
    if type(a) is not type(b):
        return False
    return a == b


def contains_value(items: Any, value: Any) -> bool:
    """Membership test using :func:`values_equal`."""

    if not isinstance(items, (list, tuple)):
        return False
    return any(values_equal(item, value) for item in items)


def to_number(value: Any) -> float | None:
    """Coerce a condition value to a number, or ``None`` when it is not one."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def format_value(value: Any) -> str:
    """Render a condition value for human-readable descriptions."""

    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_value(item) for item in value) + "]"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = [
    "Action",
    "ActionType",
    "ComparisonOperator",
    "Condition",
    "ConditionGroup",
    "ConditionNode",
    "DecisionTable",
    "DecisionTableColumn",
    "DecisionTableRow",
    "HitPolicy",
    "LogicalOperator",
    "RANGE_OPERATORS",
    "Rule",
    "RuleSet",
    "STRING_OPERATORS",
    "contains_value",
    "flatten_conditions",
    "format_value",
    "group_by_field",
    "to_number",
    "WILDCARD_CELLS",
    "values_equal",
]
