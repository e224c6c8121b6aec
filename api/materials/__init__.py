"""Materials marketplace API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from auth import get_current_user
from materials import (
    InterestForbiddenError, InterestNotFoundError, MaterialInterestError, MaterialsManager
)
from models import ApiModel, InterestStatus, User
from permissions import Permissions, require_permission
from ..dependencies import get_materials_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Materials"])


class ExpressInterestRequest(ApiModel):
    """Request model for expressing interest in a collection's material."""
    collection_id: int
    amount_requested: Optional[float] = None
    price_per_kg: Optional[float] = None
    message: Optional[str] = None


class InterestStatusUpdate(ApiModel):
    status: InterestStatus


def _http_error(e: MaterialInterestError) -> HTTPException:
    if isinstance(e, InterestNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, InterestForbiddenError):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(e))


@router.post("/api/materials/express-interest", status_code=status.HTTP_201_CREATED)
async def express_interest(
    body: ExpressInterestRequest,
    user: User = Depends(require_permission(Permissions.BUY_RECYCLABLES)),
    manager: MaterialsManager = Depends(get_materials_manager)
):
    """Express interest in the material of a collection."""
    try:
        interest = await manager.express_interest(
            user,
            body.collection_id,
            amount_requested=body.amount_requested,
            price_per_kg=body.price_per_kg,
            message=body.message
        )
        return interest.to_json()
    except MaterialInterestError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Error expressing interest: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to express interest"
        )


@router.get("/api/materials/interests")
async def get_interests(
    user: User = Depends(get_current_user),
    manager: MaterialsManager = Depends(get_materials_manager)
):
    try:
        return [i.to_json() for i in await manager.get_interests(user)]
    except Exception as e:
        logger.error(f"Error getting material interests: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get material interests"
        )


@router.get("/api/materials/available")
async def get_available_materials(
    user: User = Depends(require_permission(Permissions.VIEW_WASTE_LISTINGS)),
    manager: MaterialsManager = Depends(get_materials_manager)
):
    """Collections whose material can currently be requested."""
    try:
        return [c.to_json() for c in await manager.get_available_materials(user)]
    except MaterialInterestError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Error getting available materials: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get available materials"
        )


@router.get("/api/material-interests/collector/{collector_id}")
async def get_collector_interests(
    collector_id: int,
    user: User = Depends(require_permission(Permissions.LIST_MATERIALS)),
    manager: MaterialsManager = Depends(get_materials_manager)
):
    try:
        return [i.to_json() for i in await manager.get_interests_for_collector(user, collector_id)]
    except MaterialInterestError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Error getting interests for collector {collector_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get material interests"
        )


@router.patch("/api/material-interests/{interest_id}/status")
async def update_interest_status(
    interest_id: int,
    body: InterestStatusUpdate,
    user: User = Depends(get_current_user),
    manager: MaterialsManager = Depends(get_materials_manager)
):
    """Accept, reject or complete an interest as the assigned collector."""
    try:
        return (await manager.update_interest_status(user, interest_id, body.status)).to_json()
    except MaterialInterestError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"Error updating material interest {interest_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update material interest"
        )


__all__ = ['router']
