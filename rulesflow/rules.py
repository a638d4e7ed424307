from __future__ import annotations

"""Rule execution: evaluate a rule set against input facts."""

import copy
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from rulesflow.conditions import (
    WILDCARD_CELLS,
    Action,
    Condition,
    ConditionNode,
    DecisionTable,
    Rule,
    RuleSet,
)
from rulesflow.operators import evaluate_operator
from rulesflow.state import resolve_path, set_path

logger = logging.getLogger("rulesflow.rules")


class RuleResult(BaseModel):
    """Outcome of evaluating one rule."""

    rule_id: str
    rule_name: str
    fired: bool
    actions: List[Action] = Field(default_factory=list)


class DecisionTableResult(BaseModel):
    """Rows matched by one decision table and the actions they produced."""

    table_id: str
    table_name: str
    matched_rows: List[str] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)


class RuleExecutionResult(BaseModel):
    """Aggregate outcome of a rule-set execution."""

    success: bool
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)
    rule_results: List[RuleResult] = Field(default_factory=list)
    table_results: List[DecisionTableResult] = Field(default_factory=list)
    rules_fired: List[str] = Field(default_factory=list)
    execution_time_ms: int = 0
    error: Optional[str] = None


class RuleExecution(Protocol):
    """Collaborator signature the workflow interpreter depends on."""

    def execute(self, rule_set: RuleSet, data: Dict[str, Any]) -> RuleExecutionResult: ...


def evaluate_condition(node: Optional[ConditionNode], data: Dict[str, Any]) -> bool:
    """Evaluate a condition tree; an empty group always holds."""

    if node is None:
        return True
    if isinstance(node, Condition):
        return evaluate_operator(resolve_path(data, node.field), node.operator, node.value)
    if not node.conditions:
        return True
    if node.logic == "OR":
        return any(evaluate_condition(child, data) for child in node.conditions)
    return all(evaluate_condition(child, data) for child in node.conditions)


def apply_action(output: Dict[str, Any], action: Action) -> None:
    """Mutate ``output`` according to ``action``."""

    if action.type == "APPEND":
        current = resolve_path(output, action.field)
        if isinstance(current, list):
            current.append(copy.deepcopy(action.value))
        else:
            set_path(output, action.field, [copy.deepcopy(action.value)])
    elif action.type in ("INCREMENT", "DECREMENT"):
        current = resolve_path(output, action.field) or 0
        delta = float(action.value) if isinstance(action.value, str) else action.value
        total = current + delta if action.type == "INCREMENT" else current - delta
        set_path(output, action.field, total)
    else:
        set_path(output, action.field, copy.deepcopy(action.value))


def evaluate_rule(rule: Rule, data: Dict[str, Any]) -> RuleResult:
    """Evaluate a single rule against ``data``."""

    fired = rule.enabled and evaluate_condition(rule.conditions, data)
    return RuleResult(
        rule_id=rule.id,
        rule_name=rule.name,
        fired=fired,
        actions=list(rule.actions) if fired else [],
    )


def evaluate_decision_table(table: DecisionTable, data: Dict[str, Any]) -> DecisionTableResult:
    """Match enabled rows against ``data`` and collect their action cells.

    Empty, ``*`` and missing condition cells match anything. With the
    ``FIRST`` hit policy scanning stops at the first matching row; ``ALL``
    and ``COLLECT`` gather every matching row.
    """

    conditions = table.condition_columns()
    outputs = table.action_columns()
    matched: list[str] = []
    actions: list[Action] = []

    for row in table.rows:
        if not row.enabled:
            continue
        hit = all(
            row.values.get(column.id) in WILDCARD_CELLS
            or evaluate_operator(
                resolve_path(data, column.field),
                column.operator or "equals",
                row.values[column.id],
            )
            for column in conditions
        )
        if not hit:
            continue

        matched.append(row.id)
        for column in outputs:
            cell = row.values.get(column.id)
            if cell is None or cell == "":
                continue
            actions.append(Action(type=column.action_type or "SET", field=column.field, value=cell))
        if table.hit_policy == "FIRST":
            break

    return DecisionTableResult(
        table_id=table.id,
        table_name=table.name,
        matched_rows=matched,
        actions=actions,
    )


class RuleExecutor:
    """Fires matching rules in priority order, then decision tables, into a fresh output."""

    def execute(self, rule_set: RuleSet, data: Dict[str, Any]) -> RuleExecutionResult:
        started = time.perf_counter()
        try:
            output: Dict[str, Any] = {}
            results: list[RuleResult] = []
            table_results: list[DecisionTableResult] = []
            fired: list[str] = []
            for rule in sorted(rule_set.rules, key=lambda r: r.priority, reverse=True):
                result = evaluate_rule(rule, data)
                results.append(result)
                if result.fired:
                    fired.append(rule.id)
                    for action in result.actions:
                        apply_action(output, action)

            for table in rule_set.decision_tables:
                table_result = evaluate_decision_table(table, data)
                table_results.append(table_result)
                for action in table_result.actions:
                    apply_action(output, action)
        except Exception as exc:
            logger.warning("Rule set %s failed: %s", rule_set.id, exc)
            return RuleExecutionResult(
                success=False,
                input=data,
                execution_time_ms=_elapsed_ms(started),
                error=str(exc) or "Unknown execution error",
            )

        logger.debug(
            "Rule set %s fired %d rule(s) and matched %d table row(s)",
            rule_set.id,
            len(fired),
            sum(len(r.matched_rows) for r in table_results),
        )
        return RuleExecutionResult(
            success=True,
            input=data,
            output=output,
            rule_results=results,
            table_results=table_results,
            rules_fired=fired,
            execution_time_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> int:
    return round((time.perf_counter() - started) * 1000)


__all__ = [
    "DecisionTableResult",
    "RuleExecution",
    "RuleExecutionResult",
    "RuleExecutor",
    "RuleResult",
    "apply_action",
    "evaluate_condition",
    "evaluate_decision_table",
    "evaluate_rule",
]
