from __future__ import annotations

"""Workflow registration, validation and run routes."""

import logging
from uuid import uuid4

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, status

from app.deps import (
    get_executor,
    get_instance_store,
    get_log_stream_manager,
    get_workflow_store,
)
from app.schemas import RunRequest, ValidationResponse, WorkflowCreateRequest, WorkflowCreateResponse
from app.ws import log_message, status_message
from rulesflow.graph import WorkflowDefinition
from rulesflow.state import WorkflowInstance

logger = logging.getLogger("workflow.routes.workflow")

router = APIRouter(tags=["workflows"])


def _load_definition(workflow_store, workflow_id: str) -> WorkflowDefinition:
    try:
        payload = workflow_store.get(workflow_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return WorkflowDefinition.from_dict(payload)


async def _execute_run(
    instance_id: str,
    definition: WorkflowDefinition,
    initial_state: dict,
    executor,
    instance_store,
    manager,
) -> WorkflowInstance:
    """Run one instance, checkpointing into the store and streaming logs."""

    instance = await executor.execute(
        definition,
        instance_id,
        initial_state,
        checkpoint=instance_store.save,
        log_hook=lambda entry: manager.publish(instance_id, log_message(entry)),
    )
    manager.publish(instance_id, status_message(instance))
    logger.info("Instance %s %s", instance_id, instance.status)
    return instance


@router.post(
    "/workflows",
    response_model=WorkflowCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_workflow(
    payload: WorkflowCreateRequest,
    workflow_store=Depends(get_workflow_store),
) -> WorkflowCreateResponse:
    """Register a workflow definition."""

    if workflow_store.exists(payload.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Workflow '{payload.id}' already exists.",
        )

    body = payload.model_dump(by_alias=True)
    try:
        definition = WorkflowDefinition.from_dict(body)
    except ValueError as exc:
        logger.exception("Workflow validation failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    workflow_store.save(definition.id, body)
    logger.info("Registered workflow %s", definition.id)
    return WorkflowCreateResponse(workflow_id=definition.id, issues=definition.validate())


@router.get(
    "/workflows/{workflow_id}/validate",
    response_model=ValidationResponse,
)
async def validate_workflow(
    workflow_id: str = Path(..., description="Workflow identifier"),
    workflow_store=Depends(get_workflow_store),
) -> ValidationResponse:
    """Report problems that would make runs of the workflow fail."""

    issues = _load_definition(workflow_store, workflow_id).validate()
    return ValidationResponse(workflow_id=workflow_id, valid=not issues, issues=issues)


@router.post(
    "/workflows/{workflow_id}/run",
    response_model=WorkflowInstance,
    status_code=status.HTTP_202_ACCEPTED,
)
async def run_workflow(
    payload: RunRequest,
    background_tasks: BackgroundTasks,
    workflow_id: str = Path(..., description="Workflow identifier"),
    workflow_store=Depends(get_workflow_store),
    instance_store=Depends(get_instance_store),
    executor=Depends(get_executor),
    manager=Depends(get_log_stream_manager),
) -> WorkflowInstance:
    """Start a workflow instance."""

    definition = _load_definition(workflow_store, workflow_id)
    instance_id = str(uuid4())
    pending = WorkflowInstance(id=instance_id, workflow_id=workflow_id, state=dict(payload.input))
    await instance_store.save(pending)

    task_args = (instance_id, definition, payload.input, executor, instance_store, manager)
    if payload.background:
        background_tasks.add_task(_execute_run, *task_args)
        return pending
    return await _execute_run(*task_args)


@router.get(
    "/instances/{instance_id}",
    response_model=WorkflowInstance,
)
async def get_instance(
    instance_id: str = Path(..., description="Instance identifier"),
    instance_store=Depends(get_instance_store),
) -> WorkflowInstance:
    """Return the latest checkpoint of an instance."""

    try:
        return await instance_store.get(instance_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
