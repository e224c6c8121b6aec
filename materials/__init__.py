"""Materials marketplace.

Recyclers express interest in the material of completed collections (or
in-progress ones that already have a collector). The assigned collector
then accepts, rejects or completes each interest, and both sides earn
points for accepted and completed deals.
"""

import logging
from typing import List, Optional

from models import Collection, CollectionStatus, InterestStatus, MaterialInterest, User, UserRole
from notifications import ConnectionRegistry
from pickups import is_marketable
from storage import Storage

logger = logging.getLogger(__name__)

# (collector points, recycler points) per new interest status
INTEREST_POINTS = {
    InterestStatus.ACCEPTED.value: (10, 5),
    InterestStatus.COMPLETED.value: (15, 20),
    InterestStatus.REJECTED.value: (0, 0)
}

FINAL_INTEREST_STATUSES = {InterestStatus.COMPLETED.value, InterestStatus.REJECTED.value}


class MaterialInterestError(Exception):
    """Base exception for marketplace operations."""
    pass


class InterestNotFoundError(MaterialInterestError):
    """Raised when an interest or its collection is not found."""
    pass


class InterestForbiddenError(MaterialInterestError):
    """Raised when the user may not act on an interest."""
    pass


class InvalidInterestError(MaterialInterestError):
    """Raised when an interest request or status change is invalid."""
    pass


class MaterialsManager:
    """Manager class for material interests."""

    def __init__(self, storage: Storage, registry: Optional[ConnectionRegistry] = None):
        self.storage = storage
        self.registry = registry or ConnectionRegistry()

    async def express_interest(
        self,
        user: User,
        collection_id: int,
        amount_requested: Optional[float] = None,
        price_per_kg: Optional[float] = None,
        message: Optional[str] = None
    ) -> MaterialInterest:
        """Record a recycler's interest in a collection's material.

        Raises:
            InterestForbiddenError: If the user is not a recycler
            InterestNotFoundError: If the collection does not exist
            InvalidInterestError: If the collection is not on the market or the
                requested amount is invalid
        """
        if user.role != UserRole.RECYCLER.value:
            raise InterestForbiddenError("Only recyclers can express interest in materials")

        if amount_requested is not None and amount_requested <= 0:
            raise InvalidInterestError("Requested amount must be positive")
        if price_per_kg is not None and price_per_kg <= 0:
            raise InvalidInterestError("Price per kg must be positive")

        async with self.storage.transaction():
            collection = await self.storage.get_collection(collection_id)
            if collection is None:
                raise InterestNotFoundError(f"Collection {collection_id} not found")
            self._check_available(collection, amount_requested)

            interest = await self.storage.create_material_interest({
                'user_id': user.id,
                'collection_id': collection.id,
                'status': InterestStatus.PENDING.value,
                'amount_requested': amount_requested,
                'price_per_kg': price_per_kg,
                'message': message
            })
            await self.storage.create_activity(
                user.id,
                'material_interest',
                f"Expressed interest in {collection.waste_type} material from collection #{collection.id}"
            )

        logger.info(f"Recycler {user.id} expressed interest {interest.id} in collection {collection.id}")

        data = {
            'type': 'material_interest',
            'interest': interest.to_json(),
            'collectionId': collection.id,
            'recyclerId': user.id,
            'recyclerName': user.full_name,
            'message': f"{user.full_name} is interested in your {collection.waste_type} material"
        }
        await self.registry.send_to_user(collection.user_id, 'notification', data)
        if collection.collector_id is not None:
            await self.registry.send_to_user(collection.collector_id, 'notification', data)
        return interest

    def _check_available(self, collection: Collection, amount_requested: Optional[float]) -> None:
        if not is_marketable(collection):
            raise InvalidInterestError(
                "Materials are only available from completed collections "
                "or in-progress collections with an assigned collector"
            )
        if collection.status == CollectionStatus.COMPLETED.value:
            if not collection.waste_amount or collection.waste_amount <= 0:
                raise InvalidInterestError("This collection has no material available")
            if amount_requested is not None and amount_requested > collection.waste_amount:
                raise InvalidInterestError(
                    f"Requested amount ({amount_requested:g}kg) exceeds the available "
                    f"material ({collection.waste_amount:g}kg)"
                )

    async def update_interest_status(self, user: User, interest_id: int, status: str) -> MaterialInterest:
        """Move an interest to accepted, rejected or completed.

        Only the collection's assigned collector may do this. Completed and
        rejected interests are final and repeating the current status is
        refused, so points are never awarded twice.

        Raises:
            InterestNotFoundError: If the interest or its collection is missing
            InterestForbiddenError: If the user is not the assigned collector
            InvalidInterestError: If the status or transition is invalid
        """
        if status not in INTEREST_POINTS:
            raise InvalidInterestError(f"Invalid interest status: {status}")

        async with self.storage.transaction():
            interest = await self.storage.get_material_interest(interest_id)
            if interest is None:
                raise InterestNotFoundError(f"Material interest {interest_id} not found")

            collection = await self.storage.get_collection(interest.collection_id)
            if collection is None:
                raise InterestNotFoundError(f"Collection {interest.collection_id} not found")
            if collection.collector_id is None or collection.collector_id != user.id:
                raise InterestForbiddenError("Only the assigned collector can update this interest")

            if interest.status in FINAL_INTEREST_STATUSES:
                raise InvalidInterestError(f"Interest is already {interest.status}")
            if interest.status == status:
                raise InvalidInterestError(f"Interest is already {status}")

            updated = await self.storage.update_material_interest(interest_id, {'status': status})

            collector_points, recycler_points = INTEREST_POINTS[status]
            await self.storage.create_activity(
                user.id,
                f"material_interest_{status}",
                f"Marked material interest #{interest_id} as {status}",
                collector_points or None
            )
            await self.storage.create_activity(
                interest.user_id,
                f"material_interest_{status}",
                f"Your interest in collection #{collection.id} was {status}",
                recycler_points or None
            )
            if collector_points:
                await self.storage.increment_sustainability_score(user.id, collector_points)
            if recycler_points:
                await self.storage.increment_sustainability_score(interest.user_id, recycler_points)

        logger.info(f"Material interest {interest_id} moved {interest.status} -> {status}")

        await self.registry.send_to_user(interest.user_id, 'notification', {
            'type': 'material_interest_update',
            'interest': updated.to_json(),
            'collectionId': collection.id,
            'pointsEarned': recycler_points,
            'message': f"Your interest in collection #{collection.id} was {status}"
        })
        return updated

    async def get_interests(self, user: User) -> List[MaterialInterest]:
        """Interests relevant to the user's role."""
        if user.role == UserRole.RECYCLER.value:
            return await self.storage.get_interests_by_user(user.id)
        if user.role == UserRole.COLLECTOR.value:
            return await self.storage.get_interests_by_collector(user.id)
        return await self.storage.get_interests_by_owner(user.id)

    async def get_interests_for_collector(self, user: User, collector_id: int) -> List[MaterialInterest]:
        if user.id != collector_id:
            raise InterestForbiddenError("You can only view interests on your own collections")
        return await self.storage.get_interests_by_collector(collector_id)

    async def get_available_materials(self, user: User) -> List[Collection]:
        """Collections whose material is on the market."""
        if user.role != UserRole.RECYCLER.value:
            raise InterestForbiddenError("Only recyclers can browse available materials")
        collections = await self.storage.get_collections_by_status([
            CollectionStatus.COMPLETED.value,
            CollectionStatus.IN_PROGRESS.value
        ])
        return [c for c in collections if is_marketable(c)]


__all__ = [
    'MaterialsManager',
    'MaterialInterestError',
    'InterestNotFoundError',
    'InterestForbiddenError',
    'InvalidInterestError',
    'INTEREST_POINTS'
]
