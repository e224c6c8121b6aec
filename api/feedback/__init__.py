"""User feedback API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field

from auth import get_current_user
from models import ApiModel, User
from storage import Storage
from ..dependencies import get_storage

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Feedback"]
)


class FeedbackCreate(ApiModel):
    """Request model for submitting feedback."""
    category: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    rating: Optional[int] = Field(default=None, ge=1, le=5)


@router.post("/feedback", status_code=status.HTTP_201_CREATED)
async def submit_feedback(
    body: FeedbackCreate,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage)
):
    try:
        feedback = await storage.create_feedback({'user_id': user.id, **body.model_dump()})
        logger.info(f"User {user.id} submitted feedback {feedback.id}")
        return feedback.to_json()
    except Exception as e:
        logger.error(f"Error submitting feedback: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit feedback"
        )


@router.get("/feedback")
async def get_own_feedback(user: User = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return [f.to_json() for f in await storage.get_feedback_by_user(user.id)]


@router.get("/users/{user_id}/feedback")
async def get_user_feedback(
    user_id: int,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage)
):
    """Feedback of a user. Users may only read their own."""
    if user.id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own feedback"
        )
    return [f.to_json() for f in await storage.get_feedback_by_user(user_id)]


__all__ = ['router']
