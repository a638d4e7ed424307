from __future__ import annotations

"""State transforms used by script and service-task nodes."""

import re
from typing import Any, Dict, Iterable

from rulesflow.graph import Assignment
from rulesflow.state import resolve_path, set_path

_REFERENCE_RE = re.compile(r"^\{\{\s*(?P<path>.+?)\s*\}\}$")
_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def resolve_value(value: Any, state: Dict[str, Any]) -> Any:
    """Resolve ``{{path}}`` references against ``state``; other values pass through."""

    if isinstance(value, str):
        match = _REFERENCE_RE.match(value)
        if match:
            return resolve_path(state, match.group("path"))
    return value


def apply_assignments(assignments: Iterable[Assignment], state: Dict[str, Any]) -> Dict[str, Any]:
    """Write each assignment into ``state`` in order and return it."""

    for assignment in assignments:
        if not assignment.field or not assignment.has_value:
            continue
        set_path(state, assignment.field, resolve_value(assignment.value, state))
    return state


def _parse_script_value(raw: str, state: Dict[str, Any]) -> Any:
    if _REFERENCE_RE.match(raw):
        return resolve_value(raw, state)
    if raw == "true":
        return True
    if raw == "false":
        return False
    if _NUMBER_RE.fullmatch(raw):
        return float(raw) if any(ch in raw for ch in ".eE") else int(raw)
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        return raw[1:-1]
    return raw


def evaluate_script(script: str, state: Dict[str, Any]) -> Dict[str, Any]:
    """Evaluate a ``field = value`` per line transform script.

    Returns the assigned fields; ``state`` itself is left untouched.
    """

    result: Dict[str, Any] = {}
    for line in script.splitlines():
        line = line.strip()
        field, sep, raw = line.partition("=")
        field = field.strip()
        if not sep or not field:
            continue
        result[field] = _parse_script_value(raw.strip(), state)
    return result


__all__ = ["apply_assignments", "evaluate_script", "resolve_value"]
