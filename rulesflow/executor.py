from __future__ import annotations

"""Workflow interpreter: walks a definition from its start node to an end node."""

import asyncio
import copy
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from rulesflow.config import Settings
from rulesflow.errors import CollaboratorError, DefinitionError, MalformedExpression
from rulesflow.expressions import evaluate
from rulesflow.graph import WorkflowDefinition, WorkflowNode
from rulesflow.registry import AdapterRegistry, RuleSetRegistry
from rulesflow.rules import RuleExecution, RuleExecutor
from rulesflow.services import DEFAULT_TIMEOUT, RestServiceInvoker, ServiceInvoker, ServiceRequest
from rulesflow.state import ExecutionLogEntry, LogStatus, WorkflowInstance, set_path
from rulesflow.transforms import apply_assignments, evaluate_script

logger = logging.getLogger("rulesflow.executor")

MAX_ITERATIONS = 200

Checkpoint = Callable[[WorkflowInstance], Awaitable[None]]
"""Receives a snapshot of the instance before every node and on termination."""

LogHook = Callable[[ExecutionLogEntry], None]

NodeStep = tuple[ExecutionLogEntry, Optional[str]]


class WorkflowExecutor:
    """Sequential interpreter with checkpointing and structured logs."""

    def __init__(
        self,
        *,
        rule_executor: RuleExecution | None = None,
        rule_sets: RuleSetRegistry | None = None,
        adapters: AdapterRegistry | None = None,
        service_invoker: ServiceInvoker | None = None,
        max_iterations: int = MAX_ITERATIONS,
        service_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._rule_executor = rule_executor or RuleExecutor()
        self._rule_sets = rule_sets if rule_sets is not None else RuleSetRegistry()
        self._adapters = adapters if adapters is not None else AdapterRegistry()
        self._service_invoker = service_invoker or RestServiceInvoker()
        self._max_iterations = max_iterations
        self._service_timeout = service_timeout
        self._handlers: Dict[str, Callable[..., Awaitable[NodeStep]]] = {
            "start": self._run_start,
            "end": self._run_end,
            "ruleTask": self._run_rule_task,
            "decision": self._run_decision,
            "serviceTask": self._run_service_task,
            "script": self._run_script,
            "timer": self._run_timer,
        }

    @classmethod
    def from_settings(cls, settings: Settings, **collaborators: Any) -> "WorkflowExecutor":
        """Build an executor using limits from ``settings``."""

        return cls(
            max_iterations=settings.max_iterations,
            service_timeout=settings.service_timeout,
            **collaborators,
        )

    def run(
        self,
        definition: WorkflowDefinition,
        instance_id: str,
        initial_state: Dict[str, Any] | None = None,
        *,
        checkpoint: Optional[Checkpoint] = None,
        log_hook: Optional[LogHook] = None,
    ) -> WorkflowInstance:
        """Synchronous wrapper for non-event-loop callers."""

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            loop = asyncio.new_event_loop()
            try:
                return loop.run_until_complete(
                    self.execute(
                        definition,
                        instance_id,
                        initial_state,
                        checkpoint=checkpoint,
                        log_hook=log_hook,
                    )
                )
            finally:
                loop.close()
        raise RuntimeError("WorkflowExecutor.run cannot be called from an active event loop; use execute")

    async def execute(
        self,
        definition: WorkflowDefinition,
        instance_id: str,
        initial_state: Dict[str, Any] | None = None,
        *,
        checkpoint: Optional[Checkpoint] = None,
        log_hook: Optional[LogHook] = None,
    ) -> WorkflowInstance:
        """Run ``definition`` to completion and return the terminal instance."""

        instance = WorkflowInstance(
            id=instance_id,
            workflow_id=definition.id,
            state=copy.deepcopy(initial_state or {}),
        )
        logger.info("Instance %s of workflow %s started", instance_id, definition.id)

        start = definition.start_node()
        if start is None:
            return await self._fail(instance, "No start node found", checkpoint)

        current_node_id: Optional[str] = start.id
        iterations = 0
        while current_node_id is not None and iterations < self._max_iterations:
            iterations += 1
            node = definition.nodes.get(current_node_id)
            if node is None:
                return await self._fail(instance, f"Node {current_node_id} not found", checkpoint)

            instance.current_node = node.id
            error = await self._save(instance, checkpoint)
            if error:
                return await self._fail(instance, error, checkpoint)

            started = time.perf_counter()
            handler = self._handlers.get(node.type, self._run_unknown)
            try:
                entry, current_node_id = await handler(node, definition, instance, started)
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                logger.warning("Node %s of instance %s failed: %s", node.id, instance_id, message)
                self._append(
                    instance,
                    self._entry(node, "error", started, error=message),
                    log_hook,
                )
                return await self._fail(instance, message, checkpoint)

            self._append(instance, entry, log_hook)
            if instance.status == "completed":
                error = await self._save(instance, checkpoint)
                if error:
                    instance.output = None
                    return await self._fail(instance, error, checkpoint)
                logger.info("Instance %s completed at node %s", instance_id, node.id)
                return instance

        if current_node_id is not None:
            return await self._fail(
                instance, "Maximum iterations exceeded (possible infinite loop)", checkpoint
            )
        return await self._fail(instance, "Workflow ended without reaching an End node", checkpoint)

    # Node handlers ---------------------------------------------------------

    async def _run_start(
        self,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        started: float,
    ) -> NodeStep:
        next_id = self._single_exit(node, definition)
        return self._entry(node, "completed", started), next_id

    async def _run_end(
        self,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        started: float,
    ) -> NodeStep:
        entry = self._entry(node, "completed", started, output=copy.deepcopy(instance.state))
        instance.complete()
        return entry, None

    async def _run_rule_task(
        self,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        started: float,
    ) -> NodeStep:
        next_id = self._single_exit(node, definition)
        rule_set_id = node.config.rule_set_id
        if not rule_set_id:
            raise DefinitionError("No ruleSetId configured on rule task")
        try:
            rule_set = self._rule_sets.get(rule_set_id)
        except KeyError as exc:
            raise DefinitionError(f"Rule set {rule_set_id} not found") from exc

        snapshot = copy.deepcopy(instance.state)
        result = self._rule_executor.execute(rule_set, copy.deepcopy(snapshot))
        if inspect.isawaitable(result):
            result = await result
        if not result.success:
            raise CollaboratorError(f"Rule set {rule_set.name or rule_set.id} failed: {result.error}")

        instance.state = {**instance.state, **result.output}
        entry = self._entry(
            node,
            "completed",
            started,
            label=node.config.label or rule_set.name,
            input=snapshot,
            output=copy.deepcopy(result.output),
        )
        return entry, next_id

    async def _run_decision(
        self,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        started: float,
    ) -> NodeStep:
        edges = definition.get_edges(node.id)
        for edge in edges:
            if not edge.condition:
                continue
            try:
                matched = evaluate(instance.state, edge.condition)
            except MalformedExpression as exc:
                logger.debug("Guard on edge %s ignored: %s", edge.id, exc)
                continue
            if matched:
                output = {"branch": edge.label or edge.target, "condition": edge.condition}
                return self._entry(node, "completed", started, output=output), edge.target

        fallback = next((edge for edge in edges if edge.is_default), None)
        if fallback is None:
            raise DefinitionError("No matching condition and no default branch")
        return self._entry(node, "completed", started, output={"branch": "default"}), fallback.target

    async def _run_service_task(
        self,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        started: float,
    ) -> NodeStep:
        next_id = self._single_exit(node, definition)
        config = node.config
        if config.adapter_id:
            try:
                adapter = self._adapters.get(config.adapter_id)
            except KeyError as exc:
                raise DefinitionError(f"Adapter {config.adapter_id} not found") from exc
            if adapter.type.lower() == "rest":
                request = ServiceRequest(
                    adapter=adapter,
                    method=config.method,
                    path=config.path,
                    headers=config.headers,
                    body=copy.deepcopy(instance.state),
                    timeout=self._service_timeout,
                )
                response = await self._service_invoker.invoke(request)
                if config.output_field:
                    set_path(instance.state, config.output_field, response)
                elif isinstance(response, dict):
                    instance.state = {**instance.state, **response}
            else:
                logger.info("Adapter %s has type %s; no call made", adapter.id, adapter.type)

        if config.script:
            instance.state = {**instance.state, **evaluate_script(config.script, instance.state)}

        entry = self._entry(node, "completed", started, output=copy.deepcopy(instance.state))
        return entry, next_id

    async def _run_script(
        self,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        started: float,
    ) -> NodeStep:
        next_id = self._single_exit(node, definition)
        apply_assignments(node.config.assignments, instance.state)
        entry = self._entry(node, "completed", started, output=copy.deepcopy(instance.state))
        return entry, next_id

    async def _run_timer(
        self,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        started: float,
    ) -> NodeStep:
        # No delay is performed; durable timers need suspend/resume support.
        next_id = self._single_exit(node, definition)
        return self._entry(node, "completed", started, output={"delay": node.config.delay}), next_id

    async def _run_unknown(
        self,
        node: WorkflowNode,
        definition: WorkflowDefinition,
        instance: WorkflowInstance,
        started: float,
    ) -> NodeStep:
        next_id = self._single_exit(node, definition)
        return self._entry(node, "skipped", started), next_id

    # Helpers ---------------------------------------------------------------

    @staticmethod
    def _single_exit(node: WorkflowNode, definition: WorkflowDefinition) -> Optional[str]:
        edges = definition.get_edges(node.id)
        if len(edges) > 1:
            raise DefinitionError(
                f"Node {node.id} has {len(edges)} outgoing edges; expected exactly 1"
            )
        return edges[0].target if edges else None

    @staticmethod
    def _entry(
        node: WorkflowNode,
        status: LogStatus,
        started: float,
        *,
        label: str | None = None,
        **fields: Any,
    ) -> ExecutionLogEntry:
        return ExecutionLogEntry(
            node_id=node.id,
            node_type=node.type,
            label=label or node.label,
            status=status,
            duration_ms=round((time.perf_counter() - started) * 1000),
            **fields,
        )

    @staticmethod
    def _append(instance: WorkflowInstance, entry: ExecutionLogEntry, log_hook: Optional[LogHook]) -> None:
        instance.record(entry)
        if log_hook:
            log_hook(entry)

    async def _fail(
        self,
        instance: WorkflowInstance,
        message: str,
        checkpoint: Optional[Checkpoint],
    ) -> WorkflowInstance:
        instance.fail(message)
        await self._save(instance, checkpoint)
        logger.info("Instance %s failed: %s", instance.id, message)
        return instance

    @staticmethod
    async def _save(instance: WorkflowInstance, checkpoint: Optional[Checkpoint]) -> Optional[str]:
        """Persist a snapshot; return an error message instead of raising."""

        if not checkpoint:
            return None
        try:
            await checkpoint(instance.snapshot())
        except Exception as exc:
            logger.exception("Checkpoint for instance %s failed", instance.id)
            return f"Checkpoint failed: {exc}"
        return None


__all__ = [
    "Checkpoint",
    "LogHook",
    "MAX_ITERATIONS",
    "WorkflowExecutor",
]
