"""Impact, badge and activity API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from auth import get_current_user
from models import User
from pickups.impact import get_impact_summary, get_monthly_impact, get_waste_type_breakdown
from storage import Storage
from ..dependencies import get_storage

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Impact"]
)


@router.get("/impact")
async def get_impact(user: User = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    """Aggregate impact of the current user, computed per role."""
    try:
        return (await get_impact_summary(storage, user)).to_json()
    except Exception as e:
        logger.error(f"Error getting impact for user {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get impact"
        )


@router.get("/impact/monthly")
async def get_impact_monthly(user: User = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    try:
        return await get_monthly_impact(storage, user)
    except Exception as e:
        logger.error(f"Error getting monthly impact for user {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get monthly impact"
        )


@router.get("/impact/waste-types")
async def get_impact_waste_types(user: User = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    try:
        return await get_waste_type_breakdown(storage, user)
    except Exception as e:
        logger.error(f"Error getting waste type breakdown for user {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get waste type breakdown"
        )


@router.get("/badges")
async def get_badges(user: User = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    try:
        return [b.to_json() for b in await storage.get_badges_by_user(user.id)]
    except Exception as e:
        logger.error(f"Error getting badges for user {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get badges"
        )


@router.get("/activities")
async def get_activities(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    storage: Storage = Depends(get_storage)
):
    """Most recent activities of the current user."""
    try:
        return [a.to_json() for a in await storage.get_activities_by_user(user.id, limit)]
    except Exception as e:
        logger.error(f"Error getting activities for user {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get activities"
        )


__all__ = ['router']
