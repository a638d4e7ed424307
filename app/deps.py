from __future__ import annotations

"""Dependency helpers for FastAPI routes."""

from fastapi import Request


def get_workflow_store(request: Request):
    """Return the in-memory workflow store."""

    return request.app.state.workflow_store


def get_instance_store(request: Request):
    """Return the in-memory instance store."""

    return request.app.state.instance_store


def get_rule_sets(request: Request):
    """Return the rule set registry."""

    return request.app.state.rule_sets


def get_adapters(request: Request):
    """Return the adapter registry."""

    return request.app.state.adapters


def get_executor(request: Request):
    """Return the workflow executor."""

    return request.app.state.executor


def get_rule_executor(request: Request):
    """Return the rule executor."""

    return request.app.state.rule_executor


def get_conflict_analyzer(request: Request):
    """Return the rule conflict analyzer."""

    return request.app.state.conflict_analyzer


def get_log_stream_manager(request: Request):
    """Return the log stream manager."""

    return request.app.state.log_stream_manager


__all__ = [
    "get_adapters",
    "get_conflict_analyzer",
    "get_executor",
    "get_instance_store",
    "get_log_stream_manager",
    "get_rule_executor",
    "get_rule_sets",
    "get_workflow_store",
]
