"""Live WebSocket connection registry.

One registry is created per application and shared through
``app.state.registry``. It maps user ids to their open sockets and pushes
``{"type", "data", "timestamp"}`` frames to them. Delivery is best effort:
closed sockets are skipped and sockets whose send fails are dropped.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


def build_frame(message_type: str, data: Any, event: Optional[str] = None) -> Dict[str, Any]:
    """Build the JSON frame sent to clients."""
    frame = {
        "type": message_type,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    if event is not None:
        frame["event"] = event
    return frame


class ConnectionRegistry:
    """Tracks authenticated sockets per user and their role."""

    def __init__(self):
        self.connections: Dict[int, List[WebSocket]] = {}
        self.roles: Dict[int, str] = {}

    def register(self, user_id: int, role: str, websocket: WebSocket) -> None:
        sockets = self.connections.setdefault(user_id, [])
        if websocket not in sockets:
            sockets.append(websocket)
        self.roles[user_id] = role
        logger.info(f"Registered socket for user {user_id} ({len(sockets)} open)")

    def unregister(self, user_id: int, websocket: WebSocket) -> None:
        sockets = self.connections.get(user_id)
        if not sockets:
            return
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            del self.connections[user_id]
            self.roles.pop(user_id, None)
        logger.info(f"Unregistered socket for user {user_id}")

    def is_connected(self, user_id: int) -> bool:
        return bool(self.connections.get(user_id))

    async def send(self, websocket: WebSocket, message_type: str, data: Any, event: Optional[str] = None) -> bool:
        """Send one frame to one socket. Returns False if it was not delivered."""
        if websocket.application_state != WebSocketState.CONNECTED:
            return False
        try:
            await websocket.send_json(build_frame(message_type, data, event))
            return True
        except Exception as e:
            logger.error(f"Failed to send {message_type} frame: {e}")
            return False

    async def send_to_user(self, user_id: int, message_type: str, data: Any) -> int:
        """Push a frame to every open socket of ``user_id``.

        Returns:
            Number of sockets the frame was delivered to
        """
        delivered = 0
        dead = []
        for websocket in list(self.connections.get(user_id, [])):
            if websocket.application_state != WebSocketState.CONNECTED:
                continue
            if await self.send(websocket, message_type, data):
                delivered += 1
            else:
                dead.append(websocket)

        for websocket in dead:
            self.unregister(user_id, websocket)
        return delivered

    async def send_to_role(self, role: str, message_type: str, data: Any) -> int:
        """Push a frame to every connected user holding ``role``."""
        delivered = 0
        for user_id in [uid for uid, r in self.roles.items() if r == role]:
            delivered += await self.send_to_user(user_id, message_type, data)
        return delivered


__all__ = ['ConnectionRegistry', 'build_frame']
