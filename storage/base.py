"""Storage interface shared by the in-memory and PostgreSQL backends."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncContextManager, Dict, List, Optional

from models import (
    Activity, Badge, ChatMessage, Collection, Conversation, EcoTip, Feedback,
    Impact, ImpactTotals, MaterialInterest, RecyclingCenter, User
)

logger = logging.getLogger(__name__)

DEFAULT_ECO_TIPS = [
    {
        'category': 'composting',
        'title': 'Composting Kitchen Waste',
        'content': 'Turn your kitchen scraps into nutrient-rich soil. Start with a small bin and add fruit and vegetable peels.',
        'icon': 'lightbulb'
    },
    {
        'category': 'water',
        'title': 'Reduce Water Usage',
        'content': 'Fix leaky faucets and install low-flow showerheads to save up to 2,700 gallons of water per year.',
        'icon': 'tint'
    },
    {
        'category': 'shopping',
        'title': 'Reusable Shopping Bags',
        'content': 'Keep reusable bags in your car or by the door to avoid using plastic bags when shopping.',
        'icon': 'shopping-bag'
    },
    {
        'category': 'energy',
        'title': 'Unplug Electronics',
        'content': 'Unplug chargers and appliances when not in use to prevent phantom energy consumption.',
        'icon': 'bolt'
    },
    {
        'category': 'recycling',
        'title': 'Proper Recycling Sorting',
        'content': 'Rinse containers before recycling and learn your local recycling guidelines to maximize effectiveness.',
        'icon': 'recycle'
    }
]


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class Storage(ABC):
    """CRUD accessors over every PipaPal table.

    Multi-step writes are wrapped in ``async with storage.transaction():``;
    every accessor awaited inside the block takes part in the same unit of
    work and is rolled back together if the block raises.
    """

    async def initialize(self) -> None:
        """Prepare the backend and seed the default eco tips if none exist."""
        if not await self.get_eco_tips():
            for tip in DEFAULT_ECO_TIPS:
                await self.create_eco_tip(dict(tip))
            logger.info(f"Seeded {len(DEFAULT_ECO_TIPS)} eco tips")

    async def close(self) -> None:
        pass

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        ...

    # Users

    @abstractmethod
    async def get_user(self, user_id: int, lock: bool = False) -> Optional[User]:
        """Fetch a user. ``lock`` holds the row until the surrounding transaction ends."""

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]: ...

    @abstractmethod
    async def get_user_by_google_uid(self, google_uid: str) -> Optional[User]: ...

    @abstractmethod
    async def get_users(self, exclude_user_id: Optional[int] = None) -> List[User]: ...

    @abstractmethod
    async def create_user(self, data: Dict[str, Any]) -> User: ...

    @abstractmethod
    async def update_user(self, user_id: int, updates: Dict[str, Any]) -> Optional[User]: ...

    @abstractmethod
    async def increment_sustainability_score(self, user_id: int, points: int) -> Optional[User]:
        """Add points to a user's score in a single write."""

    # Sessions

    @abstractmethod
    async def create_session(self, token: str, user_id: int, expires_at: datetime) -> None: ...

    @abstractmethod
    async def get_session(self, token: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def revoke_session(self, token: str) -> None: ...

    @abstractmethod
    async def revoke_user_sessions(self, user_id: int) -> None: ...

    # Collections

    @abstractmethod
    async def get_collection(self, collection_id: int, lock: bool = False) -> Optional[Collection]:
        """Fetch a collection. ``lock`` holds the row until the surrounding transaction ends."""

    @abstractmethod
    async def get_collections_by_user(self, user_id: int) -> List[Collection]: ...

    @abstractmethod
    async def get_collections_by_collector(self, collector_id: int) -> List[Collection]: ...

    @abstractmethod
    async def get_collections_by_status(self, statuses: List[str]) -> List[Collection]: ...

    @abstractmethod
    async def get_upcoming_collections_by_user(self, user_id: int, now: datetime) -> List[Collection]: ...

    @abstractmethod
    async def create_collection(self, data: Dict[str, Any]) -> Collection: ...

    @abstractmethod
    async def update_collection(self, collection_id: int, updates: Dict[str, Any]) -> Optional[Collection]: ...

    @abstractmethod
    async def claim_collection(
        self,
        collection_id: int,
        collector_id: int,
        claimable_statuses: List[str]
    ) -> Optional[Collection]:
        """Assign a collector only if the collection is still unclaimed.

        Returns the updated collection, or None if it was already claimed,
        is not in a claimable status, or does not exist.
        """

    # Impacts

    @abstractmethod
    async def get_impacts_by_user(self, user_id: int) -> List[Impact]: ...

    @abstractmethod
    async def get_impacts_by_collection(self, collection_id: int) -> List[Impact]: ...

    @abstractmethod
    async def get_total_impact_by_user(self, user_id: int) -> ImpactTotals: ...

    @abstractmethod
    async def create_impact(self, data: Dict[str, Any]) -> Impact: ...

    # Badges

    @abstractmethod
    async def get_badges_by_user(self, user_id: int) -> List[Badge]: ...

    @abstractmethod
    async def create_badge(self, user_id: int, badge_type: str) -> Badge: ...

    async def award_badge(self, user_id: int, badge_type: str) -> Optional[Badge]:
        """Award a badge once, logging a badge activity. Returns None if already held."""
        badges = await self.get_badges_by_user(user_id)
        if any(b.badge_type == badge_type for b in badges):
            return None
        badge = await self.create_badge(user_id, badge_type)
        await self.create_activity(
            user_id,
            'badge_earned',
            f"Earned the {badge_type} badge"
        )
        return badge

    # Eco tips

    @abstractmethod
    async def get_eco_tips(self) -> List[EcoTip]: ...

    @abstractmethod
    async def get_eco_tip(self, tip_id: int) -> Optional[EcoTip]: ...

    @abstractmethod
    async def create_eco_tip(self, data: Dict[str, Any]) -> EcoTip: ...

    # Activities

    @abstractmethod
    async def get_activities_by_user(self, user_id: int, limit: int = 10) -> List[Activity]: ...

    @abstractmethod
    async def create_activity(
        self,
        user_id: int,
        activity_type: str,
        description: str,
        points: Optional[int] = None
    ) -> Activity: ...

    # Material interests

    @abstractmethod
    async def get_material_interest(self, interest_id: int) -> Optional[MaterialInterest]: ...

    @abstractmethod
    async def get_interests_by_collection(self, collection_id: int) -> List[MaterialInterest]: ...

    @abstractmethod
    async def get_interests_by_user(self, user_id: int) -> List[MaterialInterest]: ...

    @abstractmethod
    async def get_interests_by_collector(self, collector_id: int) -> List[MaterialInterest]: ...

    @abstractmethod
    async def get_interests_by_owner(self, owner_id: int) -> List[MaterialInterest]: ...

    @abstractmethod
    async def create_material_interest(self, data: Dict[str, Any]) -> MaterialInterest: ...

    @abstractmethod
    async def update_material_interest(self, interest_id: int, updates: Dict[str, Any]) -> Optional[MaterialInterest]: ...

    # Chat

    @abstractmethod
    async def create_chat_message(self, sender_id: int, receiver_id: int, content: str) -> ChatMessage: ...

    @abstractmethod
    async def get_messages_between(self, user_id: int, other_id: int) -> List[ChatMessage]: ...

    @abstractmethod
    async def get_conversations(self, user_id: int) -> List[Conversation]: ...

    @abstractmethod
    async def mark_messages_read(self, receiver_id: int, sender_id: int) -> int: ...

    @abstractmethod
    async def mark_message_read(self, message_id: int, receiver_id: int) -> Optional[ChatMessage]: ...

    @abstractmethod
    async def get_unread_count(self, user_id: int) -> int: ...

    # Feedback

    @abstractmethod
    async def create_feedback(self, data: Dict[str, Any]) -> Feedback: ...

    @abstractmethod
    async def get_feedback_by_user(self, user_id: int) -> List[Feedback]: ...

    # Recycling centres

    @abstractmethod
    async def get_recycling_centers(self) -> List[RecyclingCenter]: ...

    @abstractmethod
    async def get_recycling_center(self, center_id: int) -> Optional[RecyclingCenter]: ...

    @abstractmethod
    async def get_recycling_centers_by_city(self, city: str) -> List[RecyclingCenter]: ...

    @abstractmethod
    async def get_recycling_centers_by_waste_type(self, waste_type: str) -> List[RecyclingCenter]: ...

    @abstractmethod
    async def create_recycling_center(self, data: Dict[str, Any]) -> RecyclingCenter: ...

    @abstractmethod
    async def delete_recycling_centers(self) -> int: ...
