"""Entity models and enumerations shared by every PipaPal layer.

All models serialise with camelCase field names (``userId``,
``wasteAmount``, ...) and accept either camelCase or snake_case input.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UserRole(str, Enum):
    HOUSEHOLD = "household"
    ORGANIZATION = "organization"
    COLLECTOR = "collector"
    RECYCLER = "recycler"


class CollectionStatus(str, Enum):
    SCHEDULED = "scheduled"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WasteType(str, Enum):
    GENERAL = "general"
    PLASTIC = "plastic"
    PAPER = "paper"
    GLASS = "glass"
    METAL = "metal"
    ELECTRONIC = "electronic"
    ORGANIC = "organic"
    HAZARDOUS = "hazardous"
    CARDBOARD = "cardboard"


class BadgeType(str, Enum):
    ECO_STARTER = "eco_starter"
    PROFILE_COMPLETE = "profile_complete"
    WATER_SAVER = "water_saver"
    ENERGY_PRO = "energy_pro"
    RECYCLING_CHAMPION = "recycling_champion"
    ZERO_WASTE_HERO = "zero_waste_hero"
    COMMUNITY_LEADER = "community_leader"


class InterestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ApiModel(BaseModel):
    """Base model for everything that crosses the HTTP boundary."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True
    )

    def to_json(self) -> Dict[str, Any]:
        """Dump to a JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class User(ApiModel):
    id: int
    username: str
    email: str
    password: str = Field(exclude=True)
    full_name: str
    role: UserRole = UserRole.HOUSEHOLD
    address: Optional[str] = None
    phone: Optional[str] = None
    sustainability_score: int = 0
    onboarding_completed: bool = False
    google_uid: Optional[str] = None
    # Organization onboarding
    organization_type: Optional[str] = None
    organization_name: Optional[str] = None
    contact_person_name: Optional[str] = None
    contact_person_position: Optional[str] = None
    contact_person_phone: Optional[str] = None
    contact_person_email: Optional[str] = None
    # Collector / recycler onboarding
    is_certified: Optional[bool] = None
    certification_details: Optional[str] = None
    # Business profile
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    business_registration: Optional[str] = None
    business_description: Optional[str] = None
    service_area: Optional[str] = None
    created_at: Optional[datetime] = None


class Collection(ApiModel):
    id: int
    user_id: int
    collector_id: Optional[int] = None
    waste_type: WasteType
    waste_description: Optional[str] = None
    status: CollectionStatus = CollectionStatus.SCHEDULED
    scheduled_date: datetime
    completed_date: Optional[datetime] = None
    waste_amount: Optional[float] = None
    address: str
    location: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class Impact(ApiModel):
    id: int
    user_id: int
    collection_id: Optional[int] = None
    water_saved: float = 0
    co2_reduced: float = 0
    trees_equivalent: float = 0
    energy_conserved: float = 0
    waste_amount: float = 0
    created_at: Optional[datetime] = None


class ImpactTotals(ApiModel):
    water_saved: float = 0
    co2_reduced: float = 0
    trees_equivalent: float = 0
    energy_conserved: float = 0
    waste_amount: float = 0


class Badge(ApiModel):
    id: int
    user_id: int
    badge_type: str
    awarded_at: Optional[datetime] = None


class EcoTip(ApiModel):
    id: int
    category: str
    title: str
    content: str
    icon: Optional[str] = None
    created_at: Optional[datetime] = None


class Activity(ApiModel):
    id: int
    user_id: int
    activity_type: str
    description: str
    points: Optional[int] = None
    created_at: Optional[datetime] = None


class MaterialInterest(ApiModel):
    id: int
    user_id: int
    collection_id: int
    status: InterestStatus = InterestStatus.PENDING
    amount_requested: Optional[float] = None
    price_per_kg: Optional[float] = None
    message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChatMessage(ApiModel):
    id: int
    sender_id: int
    receiver_id: int
    content: str
    read: bool = False
    timestamp: Optional[datetime] = None


class Conversation(ApiModel):
    user_id: int
    username: str
    full_name: str
    role: UserRole
    last_message: str
    last_message_at: Optional[datetime] = None
    unread_count: int = 0


class Feedback(ApiModel):
    id: int
    user_id: int
    category: str
    title: str
    content: str
    rating: Optional[int] = None
    status: str = "pending"
    created_at: Optional[datetime] = None


class RecyclingCenter(ApiModel):
    id: int
    name: str
    address: str
    city: str
    county: Optional[str] = None
    location: Optional[str] = None
    operator: Optional[str] = None
    facility_type: Optional[str] = None
    waste_types: List[str] = Field(default_factory=list)
    po_box: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: Optional[datetime] = None


__all__ = [
    'UserRole', 'CollectionStatus', 'WasteType', 'BadgeType', 'InterestStatus',
    'ApiModel', 'User', 'Collection', 'Impact', 'ImpactTotals', 'Badge', 'EcoTip',
    'Activity', 'MaterialInterest', 'ChatMessage', 'Conversation', 'Feedback',
    'RecyclingCenter'
]
