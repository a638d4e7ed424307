from __future__ import annotations

"""Working-state helpers and the run-time record of a workflow instance."""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

InstanceStatus = Literal["running", "completed", "failed"]
"""Lifecycle states for a workflow instance; the last two are terminal."""

LogStatus = Literal["completed", "skipped", "error"]


class _Missing:
    """Marker for a path that does not resolve."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_path(obj: Any, path: str, default: Any = None) -> Any:
    """Follow a dotted path through nested dicts and lists."""

    current = obj
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
    return current


def set_path(obj: Dict[str, Any], path: str, value: Any) -> None:
    """Write ``value`` at a dotted path, creating intermediate dicts."""

    parts = path.split(".")
    current = obj
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


class ExecutionLogEntry(BaseModel):
    """Append-only audit record for one node execution."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    node_id: str
    node_type: str
    label: str
    status: LogStatus
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    duration_ms: int = 0


class WorkflowInstance(BaseModel):
    """Mutable run-time record of one workflow run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    workflow_id: Optional[str] = None
    status: InstanceStatus = "running"
    current_node: Optional[str] = None
    state: Dict[str, Any] = Field(default_factory=dict)
    logs: list[ExecutionLogEntry] = Field(default_factory=list)
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"

    def record(self, entry: ExecutionLogEntry) -> None:
        """Append a log entry."""

        self.logs.append(entry)

    def complete(self) -> None:
        """Mark the run completed with the current state as output."""

        self.status = "completed"
        self.output = self.state
        self.current_node = None
        self.completed_at = _utcnow()

    def fail(self, error: str) -> None:
        """Mark the run failed with ``error``."""

        self.status = "failed"
        self.error = error
        self.completed_at = _utcnow()

    def snapshot(self) -> "WorkflowInstance":
        """Deep copy suitable for handing to checkpoint writers."""

        return self.model_copy(deep=True)


__all__ = [
    "ExecutionLogEntry",
    "InstanceStatus",
    "LogStatus",
    "MISSING",
    "WorkflowInstance",
    "resolve_path",
    "set_path",
]
