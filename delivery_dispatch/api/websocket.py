"""WebSocket handlers for real-time notifications."""

import json
from typing import Any
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from delivery_dispatch.models.notification import Notification
from delivery_dispatch.service import DispatchService
from delivery_dispatch.utils.logging import get_logger

logger = get_logger(__name__)


class WebSocketMessage(BaseModel):
    """WebSocket message format."""

    type: str  # "ping", "mark_read"
    ids: list[str] | None = None
    metadata: dict[str, Any] = {}


class ConnectionManager:
    """Manages notification subscribers."""

    def __init__(self) -> None:
        self.active_connections: dict[str, WebSocket] = {}

    async def connect(self, connection_id: str, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self.active_connections[connection_id] = websocket
        logger.info("websocket_connected", connection_id=connection_id)

    def disconnect(self, connection_id: str) -> None:
        """Remove a WebSocket connection."""
        if connection_id in self.active_connections:
            del self.active_connections[connection_id]
            logger.info("websocket_disconnected", connection_id=connection_id)

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send a message to every connection, dropping the ones that fail."""
        for connection_id, websocket in list(self.active_connections.items()):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning("websocket_send_failed", connection_id=connection_id, error=str(e))
                self.disconnect(connection_id)

    async def broadcast_notification(self, notification: Notification) -> None:
        await self.broadcast(
            {"type": "notification", "notification": notification.model_dump(mode="json")}
        )


async def handle_notifications_websocket(
    websocket: WebSocket,
    service: DispatchService,
    manager: ConnectionManager,
) -> None:
    """
    Push notifications to one client until it disconnects.

    Args:
        websocket: WebSocket connection
        service: Dispatch service whose notifications are pushed
        manager: Connection registry the service broadcasts through
    """
    connection_id = uuid4().hex
    await manager.connect(connection_id, websocket)

    await websocket.send_json(
        {
            "type": "connected",
            "connection_id": connection_id,
            "unread_count": await service.unread_count(),
        }
    )

    try:
        while True:
            data = await websocket.receive_text()

            try:
                ws_message = WebSocketMessage(**json.loads(data))

                if ws_message.type == "ping":
                    await websocket.send_json({"type": "pong"})

                elif ws_message.type == "mark_read":
                    changed = await service.mark_notifications_read(ws_message.ids)
                    await websocket.send_json(
                        {
                            "type": "marked_read",
                            "marked": changed,
                            "unread_count": await service.unread_count(),
                        }
                    )

                else:
                    await websocket.send_json(
                        {"type": "error", "message": f"Unknown message type: {ws_message.type}"}
                    )

            except (json.JSONDecodeError, TypeError, ValidationError) as e:
                await websocket.send_json(
                    {
                        "type": "error",
                        "message": "Invalid message format",
                        "details": str(e),
                    }
                )

    except WebSocketDisconnect:
        manager.disconnect(connection_id)
        logger.info("websocket_client_disconnected", connection_id=connection_id)

    except Exception as e:
        logger.error("websocket_error", connection_id=connection_id, error=str(e))
        manager.disconnect(connection_id)
