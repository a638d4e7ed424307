from __future__ import annotations

"""FastAPI application factory and runtime stores."""

import asyncio
import logging
from typing import Any, Dict

from fastapi import FastAPI

from app.routes import adapter_routes, rule_routes, workflow_routes, ws_routes
from app.ws import LogStreamManager
from rulesflow.config import Settings
from rulesflow.conflicts import ConflictAnalyzer
from rulesflow.executor import WorkflowExecutor
from rulesflow.registry import AdapterRegistry, RuleSetRegistry
from rulesflow.rules import RuleExecutor
from rulesflow.services import ServiceInvoker
from rulesflow.state import WorkflowInstance

logger = logging.getLogger("workflow.app")


def configure_logging(settings: Settings) -> None:
    """Configure basic logging for the service."""

    logging.basicConfig(level=settings.log_level, format=settings.log_format)


class WorkflowStore:
    """In-memory store for registered workflow definitions."""

    def __init__(self) -> None:
        self._workflows: Dict[str, Dict[str, Any]] = {}

    def save(self, workflow_id: str, payload: Dict[str, Any]) -> None:
        """Persist a workflow definition."""

        self._workflows[workflow_id] = payload

    def get(self, workflow_id: str) -> Dict[str, Any]:
        """Retrieve a workflow definition."""

        try:
            return self._workflows[workflow_id]
        except KeyError as exc:
            raise KeyError(f"Workflow '{workflow_id}' not found.") from exc

    def exists(self, workflow_id: str) -> bool:
        """Check whether a workflow is stored."""

        return workflow_id in self._workflows


class InstanceStore:
    """In-memory store for instance checkpoints."""

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, instance_id: str) -> asyncio.Lock:
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[instance_id] = lock
        return lock

    async def save(self, instance: WorkflowInstance) -> None:
        """Store the latest snapshot of an instance; used as the checkpoint sink."""

        async with self._lock_for(instance.id):
            self._instances[instance.id] = instance

    async def get(self, instance_id: str) -> WorkflowInstance:
        """Fetch an instance by identifier."""

        async with self._lock_for(instance_id):
            try:
                return self._instances[instance_id]
            except KeyError as exc:
                raise KeyError(f"Instance '{instance_id}' not found.") from exc


def create_app(
    settings: Settings | None = None,
    *,
    service_invoker: ServiceInvoker | None = None,
) -> FastAPI:
    """Construct the FastAPI application."""

    settings = settings or Settings.from_env()
    configure_logging(settings)

    rule_sets = RuleSetRegistry()
    adapters = AdapterRegistry()
    rule_executor = RuleExecutor()
    executor = WorkflowExecutor.from_settings(
        settings,
        rule_executor=rule_executor,
        rule_sets=rule_sets,
        adapters=adapters,
        service_invoker=service_invoker,
    )

    app = FastAPI(title="rulesflow", version="0.1.0")

    app.state.settings = settings
    app.state.workflow_store = WorkflowStore()
    app.state.instance_store = InstanceStore()
    app.state.rule_sets = rule_sets
    app.state.adapters = adapters
    app.state.rule_executor = rule_executor
    app.state.conflict_analyzer = ConflictAnalyzer()
    app.state.executor = executor
    app.state.log_stream_manager = LogStreamManager()

    @app.on_event("startup")
    async def _startup() -> None:
        logger.info("rulesflow service starting up.")

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        logger.info("rulesflow service shutting down.")

    @app.get("/health", tags=["system"])
    async def health() -> Dict[str, str]:
        """Simple health probe."""

        return {"status": "ok"}

    app.include_router(workflow_routes.router)
    app.include_router(rule_routes.router)
    app.include_router(adapter_routes.router)
    app.include_router(ws_routes.router)

    return app


app = create_app()


__all__ = [
    "InstanceStore",
    "WorkflowStore",
    "app",
    "create_app",
]
