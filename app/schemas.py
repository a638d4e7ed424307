from __future__ import annotations

"""Request and response schemas for the rulesflow API."""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from rulesflow.graph import EdgeInput, NodeInput


# Workflow Schemas -------------------------------------------------------------


class WorkflowCreateRequest(BaseModel):
    """Payload for POST /workflows."""

    id: str
    name: str = ""
    nodes: List[NodeInput]
    edges: List[EdgeInput] = Field(default_factory=list)


class WorkflowCreateResponse(BaseModel):
    """Response for workflow registration."""

    workflow_id: str
    issues: List[str] = Field(default_factory=list)
    message: str = "Workflow registered"


class ValidationResponse(BaseModel):
    """Response for GET /workflows/{workflow_id}/validate."""

    workflow_id: str
    valid: bool
    issues: List[str]


# Run Schemas ------------------------------------------------------------------


class RunRequest(BaseModel):
    """Payload for POST /workflows/{workflow_id}/run."""

    input: Dict[str, Any] = Field(default_factory=dict)
    background: bool = False


# Rule Schemas -----------------------------------------------------------------


class RuleSetCreateResponse(BaseModel):
    rule_set_id: str
    message: str = "Rule set registered"


class RuleExecuteRequest(BaseModel):
    """Payload for POST /rule-sets/{rule_set_id}/execute."""

    input: Dict[str, Any] = Field(default_factory=dict)


class AdapterCreateResponse(BaseModel):
    adapter_id: str
    message: str = "Adapter registered"


__all__ = [
    "AdapterCreateResponse",
    "RuleExecuteRequest",
    "RuleSetCreateResponse",
    "RunRequest",
    "ValidationResponse",
    "WorkflowCreateRequest",
    "WorkflowCreateResponse",
]
