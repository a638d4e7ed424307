from __future__ import annotations

"""Fan-out of instance log entries and status changes to WebSocket clients."""

import asyncio
from collections import defaultdict
from typing import Any, DefaultDict, Dict, List

from rulesflow.state import ExecutionLogEntry, WorkflowInstance

StreamMessage = Dict[str, Any]

TERMINAL_STATUSES = frozenset({"completed", "failed"})


def log_message(entry: ExecutionLogEntry) -> StreamMessage:
    return {"type": "log", "log": entry.model_dump(mode="json", by_alias=True)}


def status_message(instance: WorkflowInstance) -> StreamMessage:
    return {"type": "status", "status": instance.status, "error": instance.error}


class LogStreamManager:
    """Tracks subscribers interested in an instance's progress."""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[asyncio.Queue[StreamMessage]]] = defaultdict(list)

    def register(self, instance_id: str) -> asyncio.Queue[StreamMessage]:
        """Register a subscriber queue for an instance."""

        queue: asyncio.Queue[StreamMessage] = asyncio.Queue()
        self._subscribers[instance_id].append(queue)
        return queue

    def unregister(self, instance_id: str, queue: asyncio.Queue[StreamMessage]) -> None:
        """Unregister a subscriber queue."""

        subscribers = self._subscribers.get(instance_id)
        if not subscribers:
            return
        if queue in subscribers:
            subscribers.remove(queue)
        if not subscribers:
            self._subscribers.pop(instance_id, None)

    def publish(self, instance_id: str, message: StreamMessage) -> None:
        """Deliver a message to every subscriber of ``instance_id``."""

        for queue in list(self._subscribers.get(instance_id, [])):
            queue.put_nowait(message)


__all__ = ["LogStreamManager", "StreamMessage", "TERMINAL_STATUSES", "log_message", "status_message"]
