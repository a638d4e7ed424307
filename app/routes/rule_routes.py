from __future__ import annotations

"""Rule set registration, execution and conflict analysis routes."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from app.deps import get_conflict_analyzer, get_rule_executor, get_rule_sets
from app.schemas import RuleExecuteRequest, RuleSetCreateResponse
from rulesflow.conditions import RuleSet
from rulesflow.conflicts import ConflictReport
from rulesflow.rules import RuleExecutionResult

logger = logging.getLogger("workflow.routes.rules")

router = APIRouter(prefix="/rule-sets", tags=["rules"])


def _lookup(rule_sets, rule_set_id: str) -> RuleSet:
    try:
        return rule_sets.get(rule_set_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post(
    "",
    response_model=RuleSetCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_rule_set(
    payload: RuleSet,
    rule_sets=Depends(get_rule_sets),
) -> RuleSetCreateResponse:
    """Register a rule set."""

    try:
        rule_sets.add(payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    logger.info("Registered rule set %s with %d rule(s)", payload.id, len(payload.rules))
    return RuleSetCreateResponse(rule_set_id=payload.id)


@router.get(
    "/{rule_set_id}/conflicts",
    response_model=List[ConflictReport],
)
async def get_conflicts(
    rule_set_id: str,
    rule_sets=Depends(get_rule_sets),
    analyzer=Depends(get_conflict_analyzer),
) -> List[ConflictReport]:
    """Analyse enabled rules for shadowing, contradictions and overlaps."""

    return analyzer.analyze_rule_set(_lookup(rule_sets, rule_set_id))


@router.post(
    "/{rule_set_id}/execute",
    response_model=RuleExecutionResult,
)
async def execute_rule_set(
    rule_set_id: str,
    payload: RuleExecuteRequest,
    rule_sets=Depends(get_rule_sets),
    rule_executor=Depends(get_rule_executor),
) -> RuleExecutionResult:
    """Evaluate a rule set against the supplied input."""

    return rule_executor.execute(_lookup(rule_sets, rule_set_id), payload.input)
