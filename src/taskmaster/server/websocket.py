"""WebSocket fan-out for task, agent and sprint updates."""

from __future__ import annotations

import json
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger


class ConnectionManager:
    """Track connected dashboards and push JSON events to all of them.

    Delivery is best effort: each socket receives events in send order, and a
    socket that fails to receive is dropped.
    """

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []

    @property
    def count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections.append(websocket)
        logger.debug("WebSocket connected: connections={}", len(self._connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self._connections:
            self._connections.remove(websocket)
            logger.debug("WebSocket disconnected: connections={}", len(self._connections))

    async def broadcast(self, event: str, data: Any) -> int:
        """Send ``{"type": event, "data": data}`` to every socket; returns deliveries."""
        if not self._connections:
            return 0
        message = json.dumps({"type": event, "data": data}, default=str)
        delivered = 0
        for websocket in list(self._connections):
            try:
                await websocket.send_text(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.warning("Dropping websocket after failed send of {}: {}", event, exc)
                self.disconnect(websocket)
        logger.debug("Broadcast {} to {} client(s)", event, delivered)
        return delivered
