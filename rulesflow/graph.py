from __future__ import annotations

"""Workflow graph models and loaders for the interpreter."""

import json
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from rulesflow.errors import MalformedExpression
from rulesflow.expressions import parse_expression

NodeType = Literal["start", "end", "ruleTask", "decision", "serviceTask", "script", "timer"]

SINGLE_EXIT_TYPES = frozenset({"start", "ruleTask", "serviceTask", "script", "timer"})
DEFAULT_EDGE_LABELS = frozenset({"default", "else"})


class NodeConfig(BaseModel):
    """Base for per-type node configuration read from a node's ``data`` bag."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    label: Optional[str] = None


class StartConfig(NodeConfig):
    pass


class EndConfig(NodeConfig):
    pass


class DecisionConfig(NodeConfig):
    pass


class RuleTaskConfig(NodeConfig):
    rule_set_id: Optional[str] = None


class ServiceTaskConfig(NodeConfig):
    adapter_id: Optional[str] = None
    method: str = "POST"
    path: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    output_field: Optional[str] = None
    script: Optional[str] = None


class Assignment(BaseModel):
    """Script assignment; ``value`` may be a literal or a ``{{path}}`` reference."""

    field: Optional[str] = None
    value: Any = None

    @property
    def has_value(self) -> bool:
        return "value" in self.model_fields_set


class ScriptConfig(NodeConfig):
    assignments: List[Assignment] = Field(default_factory=list)


class TimerConfig(NodeConfig):
    delay: Union[str, int, float] = "0s"


class GenericConfig(NodeConfig):
    """Configuration of node types the interpreter does not know."""

    model_config = ConfigDict(extra="allow")


NODE_CONFIGS: Dict[str, type[NodeConfig]] = {
    "start": StartConfig,
    "end": EndConfig,
    "ruleTask": RuleTaskConfig,
    "decision": DecisionConfig,
    "serviceTask": ServiceTaskConfig,
    "script": ScriptConfig,
    "timer": TimerConfig,
}

DEFAULT_LABELS: Dict[str, str] = {
    "start": "Start",
    "ruleTask": "Rule Task",
    "end": "End",
    "decision": "Decision",
    "serviceTask": "Service Task",
    "script": "Script",
    "timer": "Timer",
}


class NodeInput(BaseModel):
    """Declarative node definition as authored in the designer."""

    id: str
    type: str
    position: Dict[str, Any] = Field(default_factory=dict)
    data: Dict[str, Any] = Field(default_factory=dict)


class EdgeData(BaseModel):
    condition: Optional[str] = None


class EdgeInput(BaseModel):
    """Declarative edge definition; ``data.condition`` is the guard."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    label: Optional[str] = None
    data: EdgeData = Field(default_factory=EdgeData)

    @field_validator("data", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class DefinitionInput(BaseModel):
    """Top-level workflow definition payload."""

    id: str = "workflow"
    name: str = ""
    nodes: List[NodeInput]
    edges: List[EdgeInput] = Field(default_factory=list)

    @field_validator("nodes", "edges", mode="before")
    @classmethod
    def _decode_json(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value)
        return value


@dataclass(slots=True)
class WorkflowNode:
    """Runtime node: a type tag plus its typed configuration."""

    id: str
    type: str
    config: NodeConfig
    position: Dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.config.label or DEFAULT_LABELS.get(self.type, self.type)


@dataclass(slots=True)
class WorkflowEdge:
    """Directed edge, optionally guarded by an expression."""

    id: str
    source: str
    target: str
    condition: Optional[str] = None
    label: Optional[str] = None
    source_handle: Optional[str] = None

    @property
    def is_default(self) -> bool:
        """Unguarded edges and edges labelled default/else are fallbacks."""

        return not self.condition or (self.label or "").lower() in DEFAULT_EDGE_LABELS


def build_node(node_id: str, node_type: str, data: Dict[str, Any], position: Dict[str, Any] | None = None) -> WorkflowNode:
    """Factory helper resolving the typed configuration for ``node_type``."""

    config_cls = NODE_CONFIGS.get(node_type, GenericConfig)
    return WorkflowNode(
        id=node_id,
        type=node_type,
        config=config_cls.model_validate(data or {}),
        position=position or {},
    )


@dataclass
class WorkflowDefinition:
    """Runtime workflow graph composed of typed nodes and ordered edges."""

    id: str
    name: str
    nodes: Dict[str, WorkflowNode]
    edges: list[WorkflowEdge] = field(default_factory=list)
    adjacency: Dict[str, list[WorkflowEdge]] = field(default_factory=dict)

    def get_node(self, node_id: str) -> WorkflowNode:
        """Return the node for the provided identifier."""

        try:
            return self.nodes[node_id]
        except KeyError as exc:
            raise KeyError(f"Node '{node_id}' not found in workflow '{self.id}'.") from exc

    def get_edges(self, node_id: str) -> list[WorkflowEdge]:
        """Return outgoing edges for the node in definition order."""

        return self.adjacency.get(node_id, [])

    def start_node(self) -> Optional[WorkflowNode]:
        """Return the first node of type ``start``."""

        return next((node for node in self.nodes.values() if node.type == "start"), None)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """Build a definition from a JSON-like dictionary.

        Only the shape is checked here; graph-level problems are reported by
        :meth:`validate` and surface at run time as failed instances.
        """

        try:
            parsed = DefinitionInput.model_validate(data)
            node_map: Dict[str, WorkflowNode] = {}
            for node_cfg in parsed.nodes:
                if node_cfg.id in node_map:
                    raise ValueError(f"Duplicate node id '{node_cfg.id}'.")
                node_map[node_cfg.id] = build_node(
                    node_cfg.id, node_cfg.type, node_cfg.data, node_cfg.position
                )
        except (ValidationError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid workflow definition: {exc}") from exc

        edges: list[WorkflowEdge] = []
        adjacency: Dict[str, list[WorkflowEdge]] = defaultdict(list)
        for index, edge_cfg in enumerate(parsed.edges):
            edge = WorkflowEdge(
                id=edge_cfg.id or f"e{index}-{edge_cfg.source}-{edge_cfg.target}",
                source=edge_cfg.source,
                target=edge_cfg.target,
                condition=edge_cfg.data.condition,
                label=edge_cfg.label,
                source_handle=edge_cfg.source_handle,
            )
            edges.append(edge)
            adjacency[edge.source].append(edge)

        return cls(
            id=parsed.id,
            name=parsed.name,
            nodes=node_map,
            edges=edges,
            adjacency=dict(adjacency),
        )

    def validate(self) -> list[str]:
        """Return human-readable problems that would make runs fail."""

        issues: list[str] = []
        starts = [node.id for node in self.nodes.values() if node.type == "start"]
        if not starts:
            issues.append("No start node found.")
        elif len(starts) > 1:
            issues.append(f"Multiple start nodes: {', '.join(starts)}.")
        if not any(node.type == "end" for node in self.nodes.values()):
            issues.append("No end node found.")

        for edge in self.edges:
            for endpoint in (edge.source, edge.target):
                if endpoint not in self.nodes:
                    issues.append(f"Edge '{edge.id}' references unknown node '{endpoint}'.")

        for node in self.nodes.values():
            outgoing = self.get_edges(node.id)
            if node.type in SINGLE_EXIT_TYPES and len(outgoing) != 1:
                issues.append(
                    f"Node '{node.id}' ({node.type}) has {len(outgoing)} outgoing edges; expected exactly 1."
                )
            if node.type == "decision":
                if not outgoing:
                    issues.append(f"Decision node '{node.id}' has no outgoing edges.")
                for edge in outgoing:
                    if edge.condition:
                        try:
                            parse_expression(edge.condition)
                        except MalformedExpression as exc:
                            issues.append(f"Edge '{edge.id}': {exc}")
            if node.type == "ruleTask" and not node.config.rule_set_id:
                issues.append(f"Rule task '{node.id}' has no rule set configured.")

        if len(starts) == 1:
            reachable = self._reachable_from(starts[0])
            for node_id in self.nodes:
                if node_id not in reachable:
                    issues.append(f"Node '{node_id}' is not reachable from the start node.")
        return issues

    def _reachable_from(self, node_id: str) -> set[str]:
        seen = {node_id}
        queue = deque([node_id])
        while queue:
            for edge in self.get_edges(queue.popleft()):
                if edge.target not in seen:
                    seen.add(edge.target)
                    queue.append(edge.target)
        return seen


__all__ = [
    "Assignment",
    "DecisionConfig",
    "DefinitionInput",
    "EdgeInput",
    "EndConfig",
    "GenericConfig",
    "NODE_CONFIGS",
    "NodeConfig",
    "NodeInput",
    "NodeType",
    "RuleTaskConfig",
    "SINGLE_EXIT_TYPES",
    "ScriptConfig",
    "ServiceTaskConfig",
    "StartConfig",
    "TimerConfig",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "build_node",
]
