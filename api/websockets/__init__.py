"""WebSocket endpoint for push notifications and chat.

Clients connect to ``/ws`` and send an ``auth`` frame, authenticated by the
``token`` it carries or by the session cookie of the handshake. Once
authenticated the socket is registered with the application's
``ConnectionRegistry`` and receives ``new_collection``,
``collection_update``, ``notification``, ``new_message`` and
``unread_messages`` frames.
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from auth import AuthError
from models import User
from notifications import ConnectionRegistry
from ..chat import ChatError, send_chat_message

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])

SYSTEM = "_system"


class WebSocketSession:
    """State of one client connection."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        state = websocket.app.state
        self.registry: ConnectionRegistry = state.registry
        self.storage = state.storage
        self.auth = state.auth
        self.user: Optional[User] = None

    async def error(self, message: str) -> None:
        await self.registry.send(self.websocket, SYSTEM, {"message": message}, event="error")

    async def handle(self, frame: Dict[str, Any]) -> None:
        message_type = frame.get("type")
        if message_type == "auth":
            await self.authenticate(frame)
        elif message_type == "ping":
            await self.registry.send(self.websocket, "pong", {})
        elif message_type == "chat_message":
            await self.chat_message(frame)
        else:
            await self.error(f"Unknown message type: {message_type}")

    async def authenticate(self, frame: Dict[str, Any]) -> None:
        token = frame.get("token") or self.websocket.cookies.get(self.auth.cookie_name)
        if not token:
            await self.error("Authentication required")
            return
        try:
            user = await self.auth.verify_session(token)
        except AuthError as e:
            await self.error(str(e))
            return

        if self.user is not None and self.user.id != user.id:
            self.registry.unregister(self.user.id, self.websocket)
        self.user = user
        self.registry.register(user.id, user.role, self.websocket)

        await self.registry.send(self.websocket, SYSTEM, {
            "status": "authenticated",
            "userId": user.id,
            "role": user.role
        }, event="connection_status")

        unread = await self.storage.get_unread_count(user.id)
        if unread > 0:
            await self.registry.send(self.websocket, "unread_messages", {"count": unread})

    async def chat_message(self, frame: Dict[str, Any]) -> None:
        if self.user is None:
            await self.error("Authentication required")
            return

        data = frame.get("data") if isinstance(frame.get("data"), dict) else frame
        receiver_id = data.get("receiverId", data.get("receiver_id"))
        try:
            receiver_id = int(receiver_id)
        except (TypeError, ValueError):
            await self.error("receiverId is required")
            return

        try:
            await send_chat_message(self.storage, self.registry, self.user, receiver_id, data.get("content"))
        except ChatError as e:
            await self.error(str(e))

    def close(self) -> None:
        if self.user is not None:
            self.registry.unregister(self.user.id, self.websocket)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Notification and chat socket."""
    await websocket.accept()
    session = WebSocketSession(websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await session.error("Invalid JSON")
                continue
            if not isinstance(frame, dict):
                await session.error("Invalid message format")
                continue

            try:
                await session.handle(frame)
            except Exception as e:
                logger.error(f"Error handling {frame.get('type')} frame: {e}")
                await session.error("Failed to process message")
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        session.close()


__all__ = ['router', 'WebSocketSession']
