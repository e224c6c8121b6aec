"""Collection lifecycle for waste pickups.

This module provides functionality for:
- Creating pickup requests and awarding the scheduling points
- Role based visibility of collections
- Claiming unassigned collections
- Status transitions, including the completion side effects
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from models import Collection, CollectionStatus, User, UserRole, WasteType
from notifications import ConnectionRegistry
from storage import Storage

logger = logging.getLogger(__name__)

DEFAULT_WASTE_AMOUNT = 10.0
COMPLETION_SCORE_PER_KG = 5

# Points awarded per kg when a pickup is requested
POINTS_PER_KG = {
    WasteType.GENERAL.value: 0.5,
    WasteType.PLASTIC.value: 1.0,
    WasteType.PAPER.value: 0.8,
    WasteType.GLASS.value: 1.0,
    WasteType.METAL.value: 1.2,
    WasteType.ELECTRONIC.value: 1.5,
    WasteType.ORGANIC.value: 0.8,
    WasteType.HAZARDOUS.value: 2.0,
    WasteType.CARDBOARD.value: 0.8
}

# Impact multipliers per kg recorded when a pickup is requested
CREATION_IMPACT_FACTORS = {
    'water_saved': 50.0,
    'co2_reduced': 2.0,
    'trees_equivalent': 0.01,
    'energy_conserved': 5.0
}

# Impact multipliers per kg recorded when a pickup is completed
COMPLETION_IMPACT_FACTORS = {
    'water_saved': 10.0,
    'co2_reduced': 2.5,
    'trees_equivalent': 0.1,
    'energy_conserved': 5.0
}

OPEN_STATUSES = [CollectionStatus.SCHEDULED.value, CollectionStatus.PENDING.value]
TERMINAL_STATUSES = {CollectionStatus.COMPLETED.value, CollectionStatus.CANCELLED.value}

TRANSITIONS = {
    CollectionStatus.SCHEDULED.value: {
        CollectionStatus.PENDING.value,
        CollectionStatus.CONFIRMED.value,
        CollectionStatus.IN_PROGRESS.value,
        CollectionStatus.COMPLETED.value,
        CollectionStatus.CANCELLED.value
    },
    CollectionStatus.PENDING.value: {
        CollectionStatus.CONFIRMED.value,
        CollectionStatus.IN_PROGRESS.value,
        CollectionStatus.COMPLETED.value,
        CollectionStatus.CANCELLED.value
    },
    CollectionStatus.CONFIRMED.value: {
        CollectionStatus.IN_PROGRESS.value,
        CollectionStatus.COMPLETED.value,
        CollectionStatus.CANCELLED.value
    },
    CollectionStatus.IN_PROGRESS.value: {
        CollectionStatus.COMPLETED.value,
        CollectionStatus.CANCELLED.value
    },
    CollectionStatus.COMPLETED.value: set(),
    CollectionStatus.CANCELLED.value: set()
}

OWNER_FIELDS = {
    'waste_type',
    'waste_description',
    'scheduled_date',
    'address',
    'location',
    'notes',
    'status'
}

COLLECTOR_FIELDS = {
    'status',
    'collector_id',
    'notes',
    'waste_amount',
    'completed_date'
}

# Only written together with the transition to completed
COMPLETION_FIELDS = {'waste_amount', 'completed_date'}


class CollectionError(Exception):
    """Base exception for collection operations."""
    pass


class CollectionNotFoundError(CollectionError):
    """Raised when a collection is not found."""
    pass


class CollectionForbiddenError(CollectionError):
    """Raised when the user may not see or change a collection."""
    pass


class CollectionValidationError(CollectionError):
    """Raised when collection input is invalid."""
    pass


class InvalidTransitionError(CollectionError):
    """Raised when a status change is not allowed."""
    pass


class CollectionAlreadyClaimedError(CollectionError):
    """Raised when another collector claimed the collection first."""
    pass


def round_points(value: float) -> int:
    """Round half up, the way scores have always been rounded."""
    return int(math.floor(value + 0.5))


def calculate_points(waste_type: str, amount: float) -> int:
    """Points earned for requesting a pickup of ``amount`` kg."""
    return round_points(POINTS_PER_KG.get(waste_type, POINTS_PER_KG[WasteType.GENERAL.value]) * amount)


def impact_for(amount: float, factors: Dict[str, float]) -> Dict[str, float]:
    """Environmental impact of ``amount`` kg under a factor table."""
    impact = {metric: amount * factor for metric, factor in factors.items()}
    impact['waste_amount'] = amount
    return impact


def can_view(user: User, collection: Collection) -> bool:
    """Visibility rule for a single collection.

    Owners see their own collections. Collectors additionally see the ones
    assigned to them and every unclaimed open collection. Recyclers see
    completed collections and in-progress ones with a collector assigned.
    """
    if collection.user_id == user.id:
        return True
    if user.role == UserRole.COLLECTOR.value:
        return (
            collection.collector_id == user.id
            or (collection.collector_id is None and collection.status in OPEN_STATUSES)
        )
    if user.role == UserRole.RECYCLER.value:
        return is_marketable(collection)
    return False


def is_marketable(collection: Collection) -> bool:
    """True if recyclers may see and bid on the collection's material."""
    if collection.status == CollectionStatus.COMPLETED.value:
        return True
    return (
        collection.status == CollectionStatus.IN_PROGRESS.value
        and collection.collector_id is not None
    )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CollectionManager:
    """Manager class for handling the collection lifecycle."""

    def __init__(self, storage: Storage, registry: Optional[ConnectionRegistry] = None):
        """Initialize the collection manager.

        Args:
            storage: Storage backend
            registry: Optional connection registry used for push notifications
        """
        self.storage = storage
        self.registry = registry or ConnectionRegistry()

    async def create_collection(self, user: User, data: Dict[str, Any]) -> Tuple[Collection, int, int]:
        """Create a pickup request.

        Args:
            user: Requesting household or organization
            data: waste_type, scheduled_date and address, plus optional
                waste_description, waste_amount (kg, default 10), location,
                notes and status (scheduled or pending)

        Returns:
            Tuple of (collection, points earned, new total points)

        Raises:
            CollectionForbiddenError: If the user may not request pickups
            CollectionValidationError: If the input is invalid
        """
        if user.role not in (UserRole.HOUSEHOLD.value, UserRole.ORGANIZATION.value):
            raise CollectionForbiddenError("Only households and organizations can request pickups")

        waste_type = data.get('waste_type')
        if waste_type not in POINTS_PER_KG:
            raise CollectionValidationError(f"Invalid waste type: {waste_type}")

        status = data.get('status') or CollectionStatus.SCHEDULED.value
        if status not in OPEN_STATUSES:
            raise CollectionValidationError(f"New collections cannot start as {status}")

        amount = data.get('waste_amount')
        amount = DEFAULT_WASTE_AMOUNT if amount is None else float(amount)
        if amount <= 0:
            raise CollectionValidationError("Waste amount must be positive")

        if not data.get('address'):
            raise CollectionValidationError("Address is required")
        if not data.get('scheduled_date'):
            raise CollectionValidationError("Scheduled date is required")

        points = calculate_points(waste_type, amount)

        async with self.storage.transaction():
            collection = await self.storage.create_collection({
                'user_id': user.id,
                'waste_type': waste_type,
                'waste_description': data.get('waste_description'),
                'status': status,
                'scheduled_date': _as_utc(data['scheduled_date']),
                'waste_amount': None,
                'address': data['address'],
                'location': data.get('location'),
                'notes': data.get('notes')
            })
            await self.storage.create_impact({
                'user_id': user.id,
                'collection_id': collection.id,
                **impact_for(amount, CREATION_IMPACT_FACTORS)
            })
            await self.storage.create_activity(
                user.id,
                'collection_scheduled',
                f"Scheduled a {waste_type} waste collection",
                points
            )
            updated_user = await self.storage.increment_sustainability_score(user.id, points)

        logger.info(f"Collection {collection.id} created by user {user.id} (+{points} points)")

        payload = collection.to_json()
        await self.registry.send_to_role(UserRole.COLLECTOR.value, 'new_collection', {
            'collection': payload,
            'message': f"New {waste_type} pickup requested"
        })
        await self.registry.send_to_user(user.id, 'collection_update', {
            'collection': payload,
            'message': 'Your pickup request has been scheduled'
        })

        return collection, points, updated_user.sustainability_score

    async def get_collection(self, user: User, collection_id: int) -> Collection:
        """Fetch a collection the user is allowed to see.

        Raises:
            CollectionNotFoundError: If it does not exist
            CollectionForbiddenError: If the visibility rule hides it
        """
        collection = await self.storage.get_collection(collection_id)
        if collection is None:
            raise CollectionNotFoundError(f"Collection {collection_id} not found")
        if not can_view(user, collection):
            raise CollectionForbiddenError("You don't have permission to view this collection")
        return collection

    async def list_collections(self, user: User) -> List[Collection]:
        """Collections visible to the user, newest scheduled date first."""
        if user.role == UserRole.COLLECTOR.value:
            candidates = {c.id: c for c in await self.storage.get_collections_by_user(user.id)}
            for c in await self.storage.get_collections_by_collector(user.id):
                candidates[c.id] = c
            for c in await self.storage.get_collections_by_status(OPEN_STATUSES):
                if c.collector_id is None:
                    candidates[c.id] = c
            return sorted(candidates.values(), key=lambda c: (c.scheduled_date, c.id), reverse=True)

        if user.role == UserRole.RECYCLER.value:
            candidates = await self.storage.get_collections_by_status([
                CollectionStatus.COMPLETED.value,
                CollectionStatus.IN_PROGRESS.value
            ])
            return [c for c in candidates if is_marketable(c)]

        return await self.storage.get_collections_by_user(user.id)

    async def list_upcoming(self, user: User) -> List[Collection]:
        return await self.storage.get_upcoming_collections_by_user(user.id, datetime.now(timezone.utc))

    async def list_assigned(self, user: User) -> List[Collection]:
        if user.role != UserRole.COLLECTOR.value:
            raise CollectionForbiddenError("Only collectors have assigned collections")
        return await self.storage.get_collections_by_collector(user.id)

    async def list_completed_by_collector(self, user: User, collector_id: int) -> List[Collection]:
        if user.id != collector_id:
            raise CollectionForbiddenError("You can only view your own completed collections")
        collections = await self.storage.get_collections_by_collector(collector_id)
        return [c for c in collections if c.status == CollectionStatus.COMPLETED.value]

    async def claim_collection(self, user: User, collection_id: int) -> Collection:
        """Assign the calling collector to an unclaimed open collection.

        Raises:
            CollectionForbiddenError: If the user is not a collector
            CollectionNotFoundError: If the collection does not exist
            InvalidTransitionError: If the collection is no longer open
            CollectionAlreadyClaimedError: If another collector got there first
        """
        if user.role != UserRole.COLLECTOR.value:
            raise CollectionForbiddenError("Only collectors can claim collections")

        async with self.storage.transaction():
            collection = await self.storage.get_collection(collection_id, lock=True)
            if collection is None:
                raise CollectionNotFoundError(f"Collection {collection_id} not found")
            if collection.collector_id == user.id:
                return collection
            if collection.collector_id is not None:
                raise CollectionAlreadyClaimedError("Collection has already been claimed")
            if collection.status not in OPEN_STATUSES:
                raise InvalidTransitionError(f"Cannot claim a {collection.status} collection")

            claimed = await self.storage.claim_collection(collection_id, user.id, OPEN_STATUSES)
            if claimed is None:
                raise CollectionAlreadyClaimedError("Collection has already been claimed")

            await self.storage.create_activity(
                user.id,
                'job_accepted',
                f"Accepted {claimed.waste_type} collection #{claimed.id}"
            )

        logger.info(f"Collection {collection_id} claimed by collector {user.id}")
        await self.registry.send_to_user(claimed.user_id, 'collection_update', {
            'collection': claimed.to_json(),
            'collectorId': user.id,
            'collectorName': user.full_name,
            'message': f"{user.full_name} will collect your {claimed.waste_type} waste"
        })
        return claimed

    async def update_collection(self, user: User, collection_id: int, updates: Dict[str, Any]) -> Collection:
        """Apply a role restricted update to a collection.

        Owners may edit the request details and cancel it. The assigned
        collector may move the status forward, add notes and complete it
        with the collected ``waste_amount``. An unassigned collector may
        only claim it by setting ``collector_id`` to themselves.

        Raises:
            CollectionNotFoundError: If the collection does not exist
            CollectionForbiddenError: If the user may not make this change
            InvalidTransitionError: If the status change is not allowed
            CollectionValidationError: If the values are invalid
        """
        updates = {k: v for k, v in updates.items() if v is not None}

        collection = await self.storage.get_collection(collection_id)
        if collection is None:
            raise CollectionNotFoundError(f"Collection {collection_id} not found")

        if (
            collection.user_id != user.id
            and user.role == UserRole.COLLECTOR.value
            and collection.collector_id is None
        ):
            if set(updates) != {'collector_id'} or updates['collector_id'] != user.id:
                raise CollectionForbiddenError("Claim the collection before updating it")
            return await self.claim_collection(user, collection_id)

        async with self.storage.transaction():
            collection = await self.storage.get_collection(collection_id, lock=True)
            if collection is None:
                raise CollectionNotFoundError(f"Collection {collection_id} not found")

            if collection.user_id == user.id:
                self._check_owner_update(collection, updates)
            elif user.role == UserRole.COLLECTOR.value:
                self._check_collector_update(user, collection, updates)
            else:
                raise CollectionForbiddenError("You don't have permission to update this collection")

            updated, completing = await self._apply_update(collection, updates)

        message = None
        if updated.status != collection.status:
            message = f"Collection status changed to {updated.status}"
            logger.info(f"Collection {collection_id} moved {collection.status} -> {updated.status}")
        await self._notify_update(user, updated, message, completing)
        return updated

    def _check_owner_update(self, collection: Collection, updates: Dict[str, Any]) -> None:
        forbidden = set(updates) - OWNER_FIELDS
        if forbidden:
            raise CollectionForbiddenError(
                f"Owners cannot change: {', '.join(sorted(forbidden))}"
            )
        status = updates.get('status')
        if status is not None and status != collection.status and status != CollectionStatus.CANCELLED.value:
            raise CollectionForbiddenError("Owners can only cancel a collection")
        if 'waste_type' in updates and updates['waste_type'] not in POINTS_PER_KG:
            raise CollectionValidationError(f"Invalid waste type: {updates['waste_type']}")
        if collection.status in TERMINAL_STATUSES and set(updates) - {'notes', 'status'}:
            raise InvalidTransitionError(f"A {collection.status} collection can no longer be edited")

    def _check_collector_update(self, user: User, collection: Collection, updates: Dict[str, Any]) -> None:
        if collection.collector_id != user.id:
            raise CollectionForbiddenError("This collection is assigned to another collector")
        forbidden = set(updates) - COLLECTOR_FIELDS
        if forbidden:
            raise CollectionForbiddenError(
                f"Collectors cannot change: {', '.join(sorted(forbidden))}"
            )
        if 'collector_id' in updates and updates['collector_id'] != user.id:
            raise CollectionForbiddenError("Collections cannot be reassigned")

    async def _apply_update(self, collection: Collection, updates: Dict[str, Any]) -> Tuple[Collection, bool]:
        changes = dict(updates)
        changes.pop('collector_id', None)

        new_status = changes.get('status', collection.status)
        if new_status not in TRANSITIONS:
            raise CollectionValidationError(f"Invalid status: {new_status}")
        if new_status == collection.status:
            changes.pop('status', None)
        elif new_status not in TRANSITIONS[collection.status]:
            raise InvalidTransitionError(
                f"Cannot move a collection from {collection.status} to {new_status}"
            )

        completing = (
            new_status == CollectionStatus.COMPLETED.value
            and collection.status != CollectionStatus.COMPLETED.value
        )

        if not completing and COMPLETION_FIELDS & set(changes):
            raise CollectionValidationError(
                "wasteAmount and completedDate can only be set when completing a collection"
            )

        if completing:
            amount = changes.get('waste_amount')
            if amount is None or float(amount) <= 0:
                raise CollectionValidationError("A positive wasteAmount is required to complete a collection")
            changes['waste_amount'] = float(amount)
            changes['completed_date'] = _as_utc(changes.get('completed_date')) or datetime.now(timezone.utc)

        if 'scheduled_date' in changes:
            changes['scheduled_date'] = _as_utc(changes['scheduled_date'])

        updated = await self.storage.update_collection(collection.id, changes)
        if completing:
            await self._record_completion(updated)
        return updated, completing

    async def _record_completion(self, collection: Collection) -> None:
        """Write the completion ledger rows. Runs inside the update transaction."""
        amount = collection.waste_amount
        score = round_points(amount * COMPLETION_SCORE_PER_KG)

        await self.storage.create_impact({
            'user_id': collection.user_id,
            'collection_id': collection.id,
            **impact_for(amount, COMPLETION_IMPACT_FACTORS)
        })
        await self.storage.create_activity(
            collection.user_id,
            'collection_completed',
            f"Collection of {amount:g}kg {collection.waste_type} waste completed"
        )
        await self.storage.increment_sustainability_score(collection.user_id, score)
        await self.storage.create_activity(
            collection.user_id,
            'score_increase',
            f"Earned {score} sustainability points for recycling",
            score
        )
        if collection.collector_id is not None:
            await self.storage.create_activity(
                collection.collector_id,
                'job_completed',
                f"Completed collection #{collection.id} ({amount:g}kg {collection.waste_type})"
            )
        logger.info(f"Collection {collection.id} completed with {amount:g}kg (+{score} points)")

    async def _notify_update(
        self,
        user: User,
        collection: Collection,
        message: Optional[str],
        completing: bool
    ) -> None:
        data = {'collection': collection.to_json()}
        if message:
            data['message'] = message
        if completing:
            data['pointsEarned'] = round_points(collection.waste_amount * COMPLETION_SCORE_PER_KG)

        if collection.user_id != user.id:
            await self.registry.send_to_user(collection.user_id, 'collection_update', data)
        elif collection.collector_id is not None:
            await self.registry.send_to_user(collection.collector_id, 'collection_update', data)


__all__ = [
    'CollectionManager',
    'CollectionError',
    'CollectionNotFoundError',
    'CollectionForbiddenError',
    'CollectionValidationError',
    'InvalidTransitionError',
    'CollectionAlreadyClaimedError',
    'POINTS_PER_KG',
    'CREATION_IMPACT_FACTORS',
    'COMPLETION_IMPACT_FACTORS',
    'DEFAULT_WASTE_AMOUNT',
    'OPEN_STATUSES',
    'TRANSITIONS',
    'calculate_points',
    'impact_for',
    'can_view',
    'is_marketable',
    'round_points'
]
