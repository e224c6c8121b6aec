"""Direct messaging between users.

Messages are persisted first and then pushed as ``new_message`` frames to
every open socket of the sender and the receiver. The same path is used
by the REST endpoint and by ``chat_message`` frames on ``/ws``.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field

from auth import get_current_user
from models import ApiModel, ChatMessage, User
from notifications import ConnectionRegistry
from storage import Storage
from ..dependencies import get_registry, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/chat",
    tags=["Chat"]
)


class ChatError(Exception):
    """Raised when a chat message cannot be sent."""
    pass


class ChatMessageCreate(ApiModel):
    receiver_id: int
    content: str = Field(min_length=1, max_length=5000)


async def send_chat_message(
    storage: Storage,
    registry: ConnectionRegistry,
    sender: User,
    receiver_id: int,
    content: str
) -> ChatMessage:
    """Persist a message and push it to both participants.

    Raises:
        ChatError: If the receiver does not exist or the content is empty
    """
    content = (content or '').strip()
    if not content:
        raise ChatError("Message content is required")
    if receiver_id == sender.id:
        raise ChatError("Cannot send a message to yourself")

    receiver = await storage.get_user(receiver_id)
    if receiver is None:
        raise ChatError(f"User {receiver_id} not found")

    message = await storage.create_chat_message(sender.id, receiver.id, content)
    logger.info(f"Chat message {message.id} from {sender.id} to {receiver.id}")

    payload = message.to_json()
    await registry.send_to_user(sender.id, 'new_message', payload)
    await registry.send_to_user(receiver.id, 'new_message', payload)
    return message


@router.get("/conversations")
async def get_conversations(user: User = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    """One summary per chat partner, most recent first."""
    try:
        return [c.to_json() for c in await storage.get_conversations(user.id)]
    except Exception as e:
        logger.error(f"Error getting conversations for user {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get conversations"
        )


@router.get("/messages/{other_id}")
async def get_messages(
    other_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage)
):
    """Messages exchanged with another user. Received messages are marked read."""
    try:
        await storage.mark_messages_read(user.id, other_id)
        return [m.to_json() for m in await storage.get_messages_between(user.id, other_id)]
    except Exception as e:
        logger.error(f"Error getting messages between {user.id} and {other_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get messages"
        )


@router.post("/messages", status_code=status.HTTP_201_CREATED)
async def post_message(
    body: ChatMessageCreate,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    registry: ConnectionRegistry = Depends(get_registry)
):
    try:
        message = await send_chat_message(storage, registry, user, body.receiver_id, body.content)
        return message.to_json()
    except ChatError as e:
        code = status.HTTP_404_NOT_FOUND if "not found" in str(e) else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=str(e))
    except Exception as e:
        logger.error(f"Error sending chat message: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send message"
        )


@router.patch("/messages/{message_id}/read")
async def mark_message_read(
    message_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage)
):
    message = await storage.mark_message_read(message_id, user.id)
    if message is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Message {message_id} not found"
        )
    return message.to_json()


@router.get("/available-users")
async def get_available_users(user: User = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    """Everyone the current user can start a conversation with."""
    try:
        return [u.to_json() for u in await storage.get_users(exclude_user_id=user.id)]
    except Exception as e:
        logger.error(f"Error getting available chat users: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get users"
        )


@router.get("/unread-count")
async def get_unread_count(user: User = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return {"count": await storage.get_unread_count(user.id)}


__all__ = ['router', 'ChatError', 'send_chat_message']
