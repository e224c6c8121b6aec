"""Eco tip API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from auth import get_current_user
from ecotips import EcoTipGenerator
from models import ApiModel, User
from storage import Storage
from ..dependencies import get_storage, get_tip_generator

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/ecotips",
    tags=["Eco Tips"]
)


class GenerateTipRequest(ApiModel):
    category: Optional[str] = None
    custom_prompt: Optional[str] = None


@router.get("")
async def get_eco_tips(storage: Storage = Depends(get_storage)):
    try:
        return [t.to_json() for t in await storage.get_eco_tips()]
    except Exception as e:
        logger.error(f"Error getting eco tips: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get eco tips"
        )


@router.post("/generate", status_code=status.HTTP_201_CREATED)
async def generate_eco_tip(
    body: GenerateTipRequest,
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
    generator: EcoTipGenerator = Depends(get_tip_generator)
):
    """Generate a tip for a category and store it."""
    category = (body.category or '').strip().lower()
    if not category:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Category is required"
        )

    try:
        tip = await generator.generate(category, body.custom_prompt)
        saved = await storage.create_eco_tip({'category': category, **tip})
        logger.info(f"User {user.id} generated eco tip {saved.id} for {category}")
        return saved.to_json()
    except Exception as e:
        logger.error(f"Error generating eco tip: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate eco tip"
        )


@router.get("/{tip_id}")
async def get_eco_tip(tip_id: int, storage: Storage = Depends(get_storage)):
    tip = await storage.get_eco_tip(tip_id)
    if tip is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Eco tip {tip_id} not found"
        )
    return tip.to_json()


__all__ = ['router']
