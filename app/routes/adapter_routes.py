from __future__ import annotations

"""Service adapter registration routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.deps import get_adapters
from app.schemas import AdapterCreateResponse
from rulesflow.services import AdapterConfig

logger = logging.getLogger("workflow.routes.adapters")

router = APIRouter(prefix="/adapters", tags=["adapters"])


@router.post(
    "",
    response_model=AdapterCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_adapter(
    payload: AdapterConfig,
    adapters=Depends(get_adapters),
) -> AdapterCreateResponse:
    """Register a service adapter used by service tasks."""

    try:
        adapters.add(payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    logger.info("Registered %s adapter %s", payload.type, payload.id)
    return AdapterCreateResponse(adapter_id=payload.id)
