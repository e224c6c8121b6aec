"""In-memory storage backend.

Tables are plain dicts of id -> model. Transactions serialise on a single
asyncio lock and restore a snapshot of every table if the block raises.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models import (
    Activity, Badge, ChatMessage, Collection, Conversation, EcoTip, Feedback,
    Impact, ImpactTotals, MaterialInterest, RecyclingCenter, User
)
from .base import Storage, StorageError

logger = logging.getLogger(__name__)

TABLES = (
    'users', 'sessions', 'collections', 'impacts', 'badges', 'eco_tips',
    'activities', 'material_interests', 'chat_messages', 'feedback',
    'recycling_centers'
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _newest_first(items, attr: str = 'created_at'):
    return sorted(items, key=lambda i: (getattr(i, attr), i.id), reverse=True)


class MemStorage(Storage):
    """Storage held entirely in process memory."""

    def __init__(self):
        self._tables: Dict[str, Dict[Any, Any]] = {name: {} for name in TABLES}
        self._ids: Dict[str, int] = {name: 0 for name in TABLES}
        self._lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar('mem_storage_tx', default=False)

    def _next_id(self, table: str) -> int:
        self._ids[table] += 1
        return self._ids[table]

    def _insert(self, table: str, model_cls, data: Dict[str, Any]):
        row = dict(data)
        row['id'] = self._next_id(table)
        row.setdefault('created_at', _now())
        item = model_cls.model_validate(row)
        self._tables[table][item.id] = item
        return item

    def _update(self, table: str, model_cls, item_id: int, updates: Dict[str, Any]):
        current = self._tables[table].get(item_id)
        if current is None:
            return None
        unknown = set(updates) - set(model_cls.model_fields)
        if unknown:
            raise StorageError(f"Unknown {table} fields: {', '.join(sorted(unknown))}")
        merged = {name: getattr(current, name) for name in model_cls.model_fields}
        merged.update(updates)
        item = model_cls.model_validate(merged)
        self._tables[table][item_id] = item
        return item

    @asynccontextmanager
    async def transaction(self):
        if self._in_transaction.get():
            yield
            return

        async with self._lock:
            snapshot = (copy.deepcopy(self._tables), dict(self._ids))
            token = self._in_transaction.set(True)
            try:
                yield
            except BaseException:
                self._tables, self._ids = snapshot
                logger.debug("Rolled back in-memory transaction")
                raise
            finally:
                self._in_transaction.reset(token)

    # Users

    async def get_user(self, user_id: int, lock: bool = False) -> Optional[User]:
        return self._tables['users'].get(user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self._tables['users'].values() if u.username == username), None)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self._tables['users'].values() if u.email == email), None)

    async def get_user_by_google_uid(self, google_uid: str) -> Optional[User]:
        return next((u for u in self._tables['users'].values() if u.google_uid == google_uid), None)

    async def get_users(self, exclude_user_id: Optional[int] = None) -> List[User]:
        return [u for u in self._tables['users'].values() if u.id != exclude_user_id]

    async def create_user(self, data: Dict[str, Any]) -> User:
        if await self.get_user_by_username(data['username']):
            raise StorageError(f"Username {data['username']} already exists")
        return self._insert('users', User, data)

    async def update_user(self, user_id: int, updates: Dict[str, Any]) -> Optional[User]:
        return self._update('users', User, user_id, updates)

    async def increment_sustainability_score(self, user_id: int, points: int) -> Optional[User]:
        user = self._tables['users'].get(user_id)
        if user is None:
            return None
        return self._update('users', User, user_id, {
            'sustainability_score': user.sustainability_score + points
        })

    # Sessions

    async def create_session(self, token: str, user_id: int, expires_at: datetime) -> None:
        self._tables['sessions'][token] = {
            'token': token,
            'user_id': user_id,
            'expires_at': expires_at,
            'revoked': False
        }

    async def get_session(self, token: str) -> Optional[Dict[str, Any]]:
        session = self._tables['sessions'].get(token)
        return dict(session) if session else None

    async def revoke_session(self, token: str) -> None:
        if token in self._tables['sessions']:
            self._tables['sessions'][token]['revoked'] = True

    async def revoke_user_sessions(self, user_id: int) -> None:
        for session in self._tables['sessions'].values():
            if session['user_id'] == user_id:
                session['revoked'] = True

    # Collections

    async def get_collection(self, collection_id: int, lock: bool = False) -> Optional[Collection]:
        return self._tables['collections'].get(collection_id)

    async def get_collections_by_user(self, user_id: int) -> List[Collection]:
        rows = [c for c in self._tables['collections'].values() if c.user_id == user_id]
        return _newest_first(rows, 'scheduled_date')

    async def get_collections_by_collector(self, collector_id: int) -> List[Collection]:
        rows = [c for c in self._tables['collections'].values() if c.collector_id == collector_id]
        return _newest_first(rows, 'scheduled_date')

    async def get_collections_by_status(self, statuses: List[str]) -> List[Collection]:
        wanted = set(statuses)
        rows = [c for c in self._tables['collections'].values() if c.status in wanted]
        return _newest_first(rows, 'scheduled_date')

    async def get_upcoming_collections_by_user(self, user_id: int, now: datetime) -> List[Collection]:
        rows = [
            c for c in self._tables['collections'].values()
            if c.user_id == user_id
            and c.scheduled_date >= now
            and c.status not in ('completed', 'cancelled')
        ]
        return sorted(rows, key=lambda c: (c.scheduled_date, c.id))

    async def create_collection(self, data: Dict[str, Any]) -> Collection:
        return self._insert('collections', Collection, data)

    async def update_collection(self, collection_id: int, updates: Dict[str, Any]) -> Optional[Collection]:
        return self._update('collections', Collection, collection_id, updates)

    async def claim_collection(
        self,
        collection_id: int,
        collector_id: int,
        claimable_statuses: List[str]
    ) -> Optional[Collection]:
        current = self._tables['collections'].get(collection_id)
        if current is None or current.collector_id is not None:
            return None
        if current.status not in claimable_statuses:
            return None
        return self._update('collections', Collection, collection_id, {'collector_id': collector_id})

    # Impacts

    async def get_impacts_by_user(self, user_id: int) -> List[Impact]:
        return _newest_first(i for i in self._tables['impacts'].values() if i.user_id == user_id)

    async def get_impacts_by_collection(self, collection_id: int) -> List[Impact]:
        return [i for i in self._tables['impacts'].values() if i.collection_id == collection_id]

    async def get_total_impact_by_user(self, user_id: int) -> ImpactTotals:
        totals = ImpactTotals()
        for impact in self._tables['impacts'].values():
            if impact.user_id != user_id:
                continue
            totals.water_saved += impact.water_saved
            totals.co2_reduced += impact.co2_reduced
            totals.trees_equivalent += impact.trees_equivalent
            totals.energy_conserved += impact.energy_conserved
            totals.waste_amount += impact.waste_amount
        return totals

    async def create_impact(self, data: Dict[str, Any]) -> Impact:
        return self._insert('impacts', Impact, data)

    # Badges

    async def get_badges_by_user(self, user_id: int) -> List[Badge]:
        return [b for b in self._tables['badges'].values() if b.user_id == user_id]

    async def create_badge(self, user_id: int, badge_type: str) -> Badge:
        return self._insert('badges', Badge, {
            'user_id': user_id,
            'badge_type': badge_type,
            'awarded_at': _now()
        })

    # Eco tips

    async def get_eco_tips(self) -> List[EcoTip]:
        return list(self._tables['eco_tips'].values())

    async def get_eco_tip(self, tip_id: int) -> Optional[EcoTip]:
        return self._tables['eco_tips'].get(tip_id)

    async def create_eco_tip(self, data: Dict[str, Any]) -> EcoTip:
        return self._insert('eco_tips', EcoTip, data)

    # Activities

    async def get_activities_by_user(self, user_id: int, limit: int = 10) -> List[Activity]:
        rows = _newest_first(a for a in self._tables['activities'].values() if a.user_id == user_id)
        return rows[:limit]

    async def create_activity(
        self,
        user_id: int,
        activity_type: str,
        description: str,
        points: Optional[int] = None
    ) -> Activity:
        return self._insert('activities', Activity, {
            'user_id': user_id,
            'activity_type': activity_type,
            'description': description,
            'points': points
        })

    # Material interests

    async def get_material_interest(self, interest_id: int) -> Optional[MaterialInterest]:
        return self._tables['material_interests'].get(interest_id)

    async def get_interests_by_collection(self, collection_id: int) -> List[MaterialInterest]:
        return _newest_first(
            i for i in self._tables['material_interests'].values()
            if i.collection_id == collection_id
        )

    async def get_interests_by_user(self, user_id: int) -> List[MaterialInterest]:
        return _newest_first(
            i for i in self._tables['material_interests'].values()
            if i.user_id == user_id
        )

    async def get_interests_by_collector(self, collector_id: int) -> List[MaterialInterest]:
        collection_ids = {
            c.id for c in self._tables['collections'].values()
            if c.collector_id == collector_id
        }
        return _newest_first(
            i for i in self._tables['material_interests'].values()
            if i.collection_id in collection_ids
        )

    async def get_interests_by_owner(self, owner_id: int) -> List[MaterialInterest]:
        collection_ids = {
            c.id for c in self._tables['collections'].values()
            if c.user_id == owner_id
        }
        return _newest_first(
            i for i in self._tables['material_interests'].values()
            if i.collection_id in collection_ids
        )

    async def create_material_interest(self, data: Dict[str, Any]) -> MaterialInterest:
        row = dict(data)
        row.setdefault('updated_at', _now())
        return self._insert('material_interests', MaterialInterest, row)

    async def update_material_interest(self, interest_id: int, updates: Dict[str, Any]) -> Optional[MaterialInterest]:
        return self._update('material_interests', MaterialInterest, interest_id, {
            **updates,
            'updated_at': _now()
        })

    # Chat

    async def create_chat_message(self, sender_id: int, receiver_id: int, content: str) -> ChatMessage:
        return self._insert('chat_messages', ChatMessage, {
            'sender_id': sender_id,
            'receiver_id': receiver_id,
            'content': content,
            'read': False,
            'timestamp': _now()
        })

    async def get_messages_between(self, user_id: int, other_id: int) -> List[ChatMessage]:
        rows = [
            m for m in self._tables['chat_messages'].values()
            if (m.sender_id, m.receiver_id) in ((user_id, other_id), (other_id, user_id))
        ]
        return sorted(rows, key=lambda m: (m.timestamp, m.id))

    async def get_conversations(self, user_id: int) -> List[Conversation]:
        latest: Dict[int, ChatMessage] = {}
        unread: Dict[int, int] = {}
        for message in self._tables['chat_messages'].values():
            if message.sender_id == user_id:
                partner = message.receiver_id
            elif message.receiver_id == user_id:
                partner = message.sender_id
            else:
                continue
            previous = latest.get(partner)
            if previous is None or (message.timestamp, message.id) > (previous.timestamp, previous.id):
                latest[partner] = message
            if message.receiver_id == user_id and not message.read:
                unread[partner] = unread.get(partner, 0) + 1

        conversations = []
        for partner_id, message in latest.items():
            partner = self._tables['users'].get(partner_id)
            if partner is None:
                continue
            conversations.append(Conversation(
                user_id=partner.id,
                username=partner.username,
                full_name=partner.full_name,
                role=partner.role,
                last_message=message.content,
                last_message_at=message.timestamp,
                unread_count=unread.get(partner_id, 0)
            ))
        return sorted(conversations, key=lambda c: c.last_message_at, reverse=True)

    async def mark_messages_read(self, receiver_id: int, sender_id: int) -> int:
        count = 0
        for message in list(self._tables['chat_messages'].values()):
            if message.receiver_id == receiver_id and message.sender_id == sender_id and not message.read:
                self._update('chat_messages', ChatMessage, message.id, {'read': True})
                count += 1
        return count

    async def mark_message_read(self, message_id: int, receiver_id: int) -> Optional[ChatMessage]:
        message = self._tables['chat_messages'].get(message_id)
        if message is None or message.receiver_id != receiver_id:
            return None
        return self._update('chat_messages', ChatMessage, message_id, {'read': True})

    async def get_unread_count(self, user_id: int) -> int:
        return sum(
            1 for m in self._tables['chat_messages'].values()
            if m.receiver_id == user_id and not m.read
        )

    # Feedback

    async def create_feedback(self, data: Dict[str, Any]) -> Feedback:
        return self._insert('feedback', Feedback, data)

    async def get_feedback_by_user(self, user_id: int) -> List[Feedback]:
        return _newest_first(f for f in self._tables['feedback'].values() if f.user_id == user_id)

    # Recycling centres

    async def get_recycling_centers(self) -> List[RecyclingCenter]:
        return sorted(self._tables['recycling_centers'].values(), key=lambda c: c.name)

    async def get_recycling_center(self, center_id: int) -> Optional[RecyclingCenter]:
        return self._tables['recycling_centers'].get(center_id)

    async def get_recycling_centers_by_city(self, city: str) -> List[RecyclingCenter]:
        city = city.lower()
        return [c for c in await self.get_recycling_centers() if c.city.lower() == city]

    async def get_recycling_centers_by_waste_type(self, waste_type: str) -> List[RecyclingCenter]:
        waste_type = waste_type.lower()
        return [c for c in await self.get_recycling_centers() if waste_type in c.waste_types]

    async def create_recycling_center(self, data: Dict[str, Any]) -> RecyclingCenter:
        return self._insert('recycling_centers', RecyclingCenter, data)

    async def delete_recycling_centers(self) -> int:
        count = len(self._tables['recycling_centers'])
        self._tables['recycling_centers'] = {}
        return count


__all__ = ['MemStorage']
