"""Recycling centre directory endpoints. These are public."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from storage import Storage
from ..dependencies import get_storage

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/recycling-centers",
    tags=["Recycling Centers"]
)


@router.get("")
async def get_recycling_centers(storage: Storage = Depends(get_storage)):
    try:
        return [c.to_json() for c in await storage.get_recycling_centers()]
    except Exception as e:
        logger.error(f"Error getting recycling centers: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get recycling centers"
        )


@router.get("/city/{city}")
async def get_recycling_centers_by_city(city: str, storage: Storage = Depends(get_storage)):
    return [c.to_json() for c in await storage.get_recycling_centers_by_city(city)]


@router.get("/waste-type/{waste_type}")
async def get_recycling_centers_by_waste_type(waste_type: str, storage: Storage = Depends(get_storage)):
    """Centres accepting the given waste type."""
    return [c.to_json() for c in await storage.get_recycling_centers_by_waste_type(waste_type)]


@router.get("/{center_id}")
async def get_recycling_center(center_id: int, storage: Storage = Depends(get_storage)):
    center = await storage.get_recycling_center(center_id)
    if center is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Recycling center {center_id} not found"
        )
    return center.to_json()


__all__ = ['router']
