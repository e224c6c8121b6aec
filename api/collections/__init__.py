"""Collection (pickup) API endpoints."""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import Field

from auth import get_current_user
from models import ApiModel, Collection, CollectionStatus, User, UserRole, WasteType
from permissions import Permissions, require_ownership, require_permission, require_role
from pickups import (
    CollectionAlreadyClaimedError, CollectionError, CollectionForbiddenError,
    CollectionManager, CollectionNotFoundError
)
from storage import Storage
from ..dependencies import get_collection_manager, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/collections",
    tags=["Collections"]
)


class CollectionCreate(ApiModel):
    """Request model for a new pickup."""
    waste_type: WasteType
    waste_description: Optional[str] = None
    waste_amount: Optional[float] = Field(default=None, gt=0)
    scheduled_date: datetime
    address: str = Field(min_length=1)
    location: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    status: Optional[CollectionStatus] = None


class CollectionUpdate(ApiModel):
    """Request model for collection updates; allowed fields depend on the role."""
    waste_type: Optional[WasteType] = None
    waste_description: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    address: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    status: Optional[CollectionStatus] = None
    collector_id: Optional[int] = None
    waste_amount: Optional[float] = None
    completed_date: Optional[datetime] = None


def _http_error(e: CollectionError) -> HTTPException:
    if isinstance(e, CollectionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, CollectionForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, CollectionAlreadyClaimedError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _server_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed {action}"
    )


@router.get("")
async def list_collections(
    user: User = Depends(get_current_user),
    manager: CollectionManager = Depends(get_collection_manager)
):
    """Collections visible to the current user."""
    try:
        return [c.to_json() for c in await manager.list_collections(user)]
    except Exception as e:
        raise _server_error("listing collections", e)


@router.get("/upcoming")
async def list_upcoming(
    user: User = Depends(get_current_user),
    manager: CollectionManager = Depends(get_collection_manager)
):
    try:
        return [c.to_json() for c in await manager.list_upcoming(user)]
    except Exception as e:
        raise _server_error("listing upcoming collections", e)


@router.get("/assigned")
async def list_assigned(
    user: User = Depends(require_role(UserRole.COLLECTOR)),
    manager: CollectionManager = Depends(get_collection_manager)
):
    """Collections claimed by the current collector."""
    try:
        return [c.to_json() for c in await manager.list_assigned(user)]
    except CollectionError as e:
        raise _http_error(e)
    except Exception as e:
        raise _server_error("listing assigned collections", e)


@router.get("/collector/{collector_id}/completed")
async def list_completed_by_collector(
    collector_id: int,
    user: User = Depends(require_permission(Permissions.MARK_JOB_COMPLETE)),
    manager: CollectionManager = Depends(get_collection_manager)
):
    try:
        return [c.to_json() for c in await manager.list_completed_by_collector(user, collector_id)]
    except CollectionError as e:
        raise _http_error(e)
    except Exception as e:
        raise _server_error("listing completed collections", e)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_collection(
    body: CollectionCreate,
    user: User = Depends(require_permission(Permissions.REQUEST_PICKUP)),
    manager: CollectionManager = Depends(get_collection_manager)
):
    """Request a pickup. The response carries the points it earned."""
    try:
        collection, points, total = await manager.create_collection(user, body.model_dump())
        return {
            **collection.to_json(),
            "pointsEarned": points,
            "newTotalPoints": total
        }
    except CollectionError as e:
        raise _http_error(e)
    except Exception as e:
        raise _server_error("creating collection", e)


@router.get("/{collection_id}")
async def get_collection(
    collection_id: int,
    user: User = Depends(get_current_user),
    manager: CollectionManager = Depends(get_collection_manager)
):
    try:
        return (await manager.get_collection(user, collection_id)).to_json()
    except CollectionError as e:
        raise _http_error(e)
    except Exception as e:
        raise _server_error("fetching collection", e)


@router.patch("/{collection_id}")
async def update_collection(
    collection_id: int,
    body: CollectionUpdate,
    user: User = Depends(get_current_user),
    manager: CollectionManager = Depends(get_collection_manager)
):
    """Update a collection within the limits of the caller's role."""
    try:
        updated = await manager.update_collection(
            user,
            collection_id,
            body.model_dump(exclude_unset=True)
        )
        return updated.to_json()
    except CollectionError as e:
        raise _http_error(e)
    except Exception as e:
        raise _server_error("updating collection", e)


@router.post("/{collection_id}/claim")
async def claim_collection(
    collection_id: int,
    user: User = Depends(require_permission(Permissions.ACCEPT_PICKUP_JOBS)),
    manager: CollectionManager = Depends(get_collection_manager)
):
    """Assign the current collector to an unclaimed collection."""
    try:
        return (await manager.claim_collection(user, collection_id)).to_json()
    except CollectionError as e:
        raise _http_error(e)
    except Exception as e:
        raise _server_error("claiming collection", e)


async def _fetch_collection(request: Request, collection_id: int) -> Optional[Collection]:
    return await request.app.state.storage.get_collection(collection_id)


@router.get("/{collection_id}/interests")
async def get_collection_interests(
    collection: Collection = Depends(require_ownership(_fetch_collection, 'collection_id')),
    storage: Storage = Depends(get_storage)
):
    """Material interests on a collection, for its owner or assigned collector."""
    try:
        return [i.to_json() for i in await storage.get_interests_by_collection(collection.id)]
    except Exception as e:
        raise _server_error("listing collection interests", e)


__all__ = ['router']
