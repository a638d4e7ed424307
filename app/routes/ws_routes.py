from __future__ import annotations

"""WebSocket routes for streaming instance logs."""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from app.ws import TERMINAL_STATUSES, log_message, status_message

logger = logging.getLogger("workflow.routes.ws")

router = APIRouter()


@router.websocket("/ws/instances/{instance_id}")
async def stream_logs(websocket: WebSocket, instance_id: str) -> None:
    """Replay checkpointed logs, then stream live entries until the run ends."""

    instance_store = websocket.app.state.instance_store
    manager = websocket.app.state.log_stream_manager

    await websocket.accept()
    try:
        instance = await instance_store.get(instance_id)
    except KeyError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Unknown instance_id")
        return

    queue = manager.register(instance_id)
    try:
        for entry in instance.logs:
            await websocket.send_json(log_message(entry))
        if instance.status in TERMINAL_STATUSES:
            await websocket.send_json(status_message(instance))
            return

        while True:
            message = await queue.get()
            await websocket.send_json(message)
            if message.get("type") == "status":
                break
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected for instance %s", instance_id)
    finally:
        manager.unregister(instance_id, queue)
        try:
            await websocket.close()
        except RuntimeError:
            pass
