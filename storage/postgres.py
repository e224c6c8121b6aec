"""PostgreSQL storage backend built on the shared asyncpg pool."""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg

from database import get_pool
from models import (
    Activity, Badge, ChatMessage, Collection, Conversation, EcoTip, Feedback,
    Impact, ImpactTotals, MaterialInterest, RecyclingCenter, User
)
from .base import Storage, StorageError

logger = logging.getLogger(__name__)


class DatabaseStorage(Storage):
    """Storage backed by the tables in ``database/schema``."""

    def __init__(self, pool=None):
        """Initialize the storage.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
        """
        self.pool = pool
        self._conn: ContextVar[Optional[asyncpg.Connection]] = ContextVar(
            'database_storage_conn', default=None
        )

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def close(self) -> None:
        # The pool is owned by the database module
        self.pool = None

    @asynccontextmanager
    async def _connection(self):
        conn = self._conn.get()
        if conn is not None:
            yield conn
            return
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        if self._conn.get() is not None:
            yield
            return

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                token = self._conn.set(conn)
                try:
                    yield
                finally:
                    self._conn.reset(token)

    async def _fetch(self, model_cls, query: str, *args) -> List[Any]:
        async with self._connection() as conn:
            rows = await conn.fetch(query, *args)
        return [model_cls.model_validate(dict(row)) for row in rows]

    async def _fetchrow(self, model_cls, query: str, *args) -> Optional[Any]:
        async with self._connection() as conn:
            row = await conn.fetchrow(query, *args)
        return model_cls.model_validate(dict(row)) if row else None

    async def _insert(self, table: str, model_cls, data: Dict[str, Any]):
        columns = [c for c in data if c in model_cls.model_fields and c != 'id']
        placeholders = ', '.join(f'${i}' for i in range(1, len(columns) + 1))
        query = f'''
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            RETURNING *
        '''
        try:
            return await self._fetchrow(model_cls, query, *(data[c] for c in columns))
        except asyncpg.UniqueViolationError as e:
            raise StorageError(f"Duplicate {table} row: {e.detail or e}")

    async def _update(self, table: str, model_cls, item_id: int, updates: Dict[str, Any]):
        unknown = set(updates) - set(model_cls.model_fields)
        if unknown:
            raise StorageError(f"Unknown {table} fields: {', '.join(sorted(unknown))}")
        if not updates:
            return await self._fetchrow(model_cls, f'SELECT * FROM {table} WHERE id = $1', item_id)

        columns = list(updates)
        assignments = ', '.join(f'{c} = ${i}' for i, c in enumerate(columns, start=2))
        query = f'UPDATE {table} SET {assignments} WHERE id = $1 RETURNING *'
        return await self._fetchrow(model_cls, query, item_id, *(updates[c] for c in columns))

    # Users

    async def get_user(self, user_id: int, lock: bool = False) -> Optional[User]:
        query = 'SELECT * FROM users WHERE id = $1'
        if lock:
            query += ' FOR UPDATE'
        return await self._fetchrow(User, query, user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return await self._fetchrow(User, 'SELECT * FROM users WHERE username = $1', username)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await self._fetchrow(User, 'SELECT * FROM users WHERE email = $1', email)

    async def get_user_by_google_uid(self, google_uid: str) -> Optional[User]:
        return await self._fetchrow(User, 'SELECT * FROM users WHERE google_uid = $1', google_uid)

    async def get_users(self, exclude_user_id: Optional[int] = None) -> List[User]:
        return await self._fetch(
            User,
            'SELECT * FROM users WHERE $1::int IS NULL OR id != $1 ORDER BY id',
            exclude_user_id
        )

    async def create_user(self, data: Dict[str, Any]) -> User:
        return await self._insert('users', User, data)

    async def update_user(self, user_id: int, updates: Dict[str, Any]) -> Optional[User]:
        return await self._update('users', User, user_id, updates)

    async def increment_sustainability_score(self, user_id: int, points: int) -> Optional[User]:
        return await self._fetchrow(
            User,
            '''
            UPDATE users
            SET sustainability_score = sustainability_score + $2
            WHERE id = $1
            RETURNING *
            ''',
            user_id,
            points
        )

    # Sessions

    async def create_session(self, token: str, user_id: int, expires_at: datetime) -> None:
        async with self._connection() as conn:
            await conn.execute(
                'INSERT INTO auth_sessions (token, user_id, expires_at) VALUES ($1, $2, $3)',
                token, user_id, expires_at
            )

    async def get_session(self, token: str) -> Optional[Dict[str, Any]]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                'SELECT token, user_id, expires_at, revoked FROM auth_sessions WHERE token = $1',
                token
            )
        return dict(row) if row else None

    async def revoke_session(self, token: str) -> None:
        async with self._connection() as conn:
            await conn.execute('UPDATE auth_sessions SET revoked = true WHERE token = $1', token)

    async def revoke_user_sessions(self, user_id: int) -> None:
        async with self._connection() as conn:
            await conn.execute('UPDATE auth_sessions SET revoked = true WHERE user_id = $1', user_id)

    # Collections

    async def get_collection(self, collection_id: int, lock: bool = False) -> Optional[Collection]:
        query = 'SELECT * FROM collections WHERE id = $1'
        if lock:
            query += ' FOR UPDATE'
        return await self._fetchrow(Collection, query, collection_id)

    async def get_collections_by_user(self, user_id: int) -> List[Collection]:
        return await self._fetch(
            Collection,
            'SELECT * FROM collections WHERE user_id = $1 ORDER BY scheduled_date DESC, id DESC',
            user_id
        )

    async def get_collections_by_collector(self, collector_id: int) -> List[Collection]:
        return await self._fetch(
            Collection,
            'SELECT * FROM collections WHERE collector_id = $1 ORDER BY scheduled_date DESC, id DESC',
            collector_id
        )

    async def get_collections_by_status(self, statuses: List[str]) -> List[Collection]:
        return await self._fetch(
            Collection,
            'SELECT * FROM collections WHERE status = ANY($1::text[]) ORDER BY scheduled_date DESC, id DESC',
            list(statuses)
        )

    async def get_upcoming_collections_by_user(self, user_id: int, now: datetime) -> List[Collection]:
        return await self._fetch(
            Collection,
            '''
            SELECT * FROM collections
            WHERE user_id = $1
            AND scheduled_date >= $2
            AND status NOT IN ('completed', 'cancelled')
            ORDER BY scheduled_date, id
            ''',
            user_id,
            now
        )

    async def create_collection(self, data: Dict[str, Any]) -> Collection:
        return await self._insert('collections', Collection, data)

    async def update_collection(self, collection_id: int, updates: Dict[str, Any]) -> Optional[Collection]:
        return await self._update('collections', Collection, collection_id, updates)

    async def claim_collection(
        self,
        collection_id: int,
        collector_id: int,
        claimable_statuses: List[str]
    ) -> Optional[Collection]:
        return await self._fetchrow(
            Collection,
            '''
            UPDATE collections
            SET collector_id = $2
            WHERE id = $1
            AND collector_id IS NULL
            AND status = ANY($3::text[])
            RETURNING *
            ''',
            collection_id,
            collector_id,
            list(claimable_statuses)
        )

    # Impacts

    async def get_impacts_by_user(self, user_id: int) -> List[Impact]:
        return await self._fetch(
            Impact,
            'SELECT * FROM impacts WHERE user_id = $1 ORDER BY created_at DESC, id DESC',
            user_id
        )

    async def get_impacts_by_collection(self, collection_id: int) -> List[Impact]:
        return await self._fetch(
            Impact,
            'SELECT * FROM impacts WHERE collection_id = $1 ORDER BY id',
            collection_id
        )

    async def get_total_impact_by_user(self, user_id: int) -> ImpactTotals:
        async with self._connection() as conn:
            row = await conn.fetchrow('''
                SELECT
                    COALESCE(SUM(water_saved), 0) AS water_saved,
                    COALESCE(SUM(co2_reduced), 0) AS co2_reduced,
                    COALESCE(SUM(trees_equivalent), 0) AS trees_equivalent,
                    COALESCE(SUM(energy_conserved), 0) AS energy_conserved,
                    COALESCE(SUM(waste_amount), 0) AS waste_amount
                FROM impacts
                WHERE user_id = $1
            ''', user_id)
        return ImpactTotals.model_validate(dict(row))

    async def create_impact(self, data: Dict[str, Any]) -> Impact:
        return await self._insert('impacts', Impact, data)

    # Badges

    async def get_badges_by_user(self, user_id: int) -> List[Badge]:
        return await self._fetch(
            Badge,
            'SELECT * FROM badges WHERE user_id = $1 ORDER BY awarded_at, id',
            user_id
        )

    async def create_badge(self, user_id: int, badge_type: str) -> Badge:
        return await self._insert('badges', Badge, {
            'user_id': user_id,
            'badge_type': badge_type
        })

    # Eco tips

    async def get_eco_tips(self) -> List[EcoTip]:
        return await self._fetch(EcoTip, 'SELECT * FROM eco_tips ORDER BY id')

    async def get_eco_tip(self, tip_id: int) -> Optional[EcoTip]:
        return await self._fetchrow(EcoTip, 'SELECT * FROM eco_tips WHERE id = $1', tip_id)

    async def create_eco_tip(self, data: Dict[str, Any]) -> EcoTip:
        return await self._insert('eco_tips', EcoTip, data)

    # Activities

    async def get_activities_by_user(self, user_id: int, limit: int = 10) -> List[Activity]:
        return await self._fetch(
            Activity,
            '''
            SELECT * FROM activities
            WHERE user_id = $1
            ORDER BY created_at DESC, id DESC
            LIMIT $2
            ''',
            user_id,
            limit
        )

    async def create_activity(
        self,
        user_id: int,
        activity_type: str,
        description: str,
        points: Optional[int] = None
    ) -> Activity:
        return await self._insert('activities', Activity, {
            'user_id': user_id,
            'activity_type': activity_type,
            'description': description,
            'points': points
        })

    # Material interests

    async def get_material_interest(self, interest_id: int) -> Optional[MaterialInterest]:
        return await self._fetchrow(
            MaterialInterest,
            'SELECT * FROM material_interests WHERE id = $1',
            interest_id
        )

    async def get_interests_by_collection(self, collection_id: int) -> List[MaterialInterest]:
        return await self._fetch(
            MaterialInterest,
            'SELECT * FROM material_interests WHERE collection_id = $1 ORDER BY created_at DESC, id DESC',
            collection_id
        )

    async def get_interests_by_user(self, user_id: int) -> List[MaterialInterest]:
        return await self._fetch(
            MaterialInterest,
            'SELECT * FROM material_interests WHERE user_id = $1 ORDER BY created_at DESC, id DESC',
            user_id
        )

    async def get_interests_by_collector(self, collector_id: int) -> List[MaterialInterest]:
        return await self._fetch(
            MaterialInterest,
            '''
            SELECT mi.* FROM material_interests mi
            JOIN collections c ON c.id = mi.collection_id
            WHERE c.collector_id = $1
            ORDER BY mi.created_at DESC, mi.id DESC
            ''',
            collector_id
        )

    async def get_interests_by_owner(self, owner_id: int) -> List[MaterialInterest]:
        return await self._fetch(
            MaterialInterest,
            '''
            SELECT mi.* FROM material_interests mi
            JOIN collections c ON c.id = mi.collection_id
            WHERE c.user_id = $1
            ORDER BY mi.created_at DESC, mi.id DESC
            ''',
            owner_id
        )

    async def create_material_interest(self, data: Dict[str, Any]) -> MaterialInterest:
        return await self._insert('material_interests', MaterialInterest, data)

    async def update_material_interest(self, interest_id: int, updates: Dict[str, Any]) -> Optional[MaterialInterest]:
        # updated_at is maintained by the touch_updated_at trigger
        return await self._update('material_interests', MaterialInterest, interest_id, updates)

    # Chat

    async def create_chat_message(self, sender_id: int, receiver_id: int, content: str) -> ChatMessage:
        return await self._insert('chat_messages', ChatMessage, {
            'sender_id': sender_id,
            'receiver_id': receiver_id,
            'content': content
        })

    async def get_messages_between(self, user_id: int, other_id: int) -> List[ChatMessage]:
        return await self._fetch(
            ChatMessage,
            '''
            SELECT * FROM chat_messages
            WHERE (sender_id = $1 AND receiver_id = $2)
            OR (sender_id = $2 AND receiver_id = $1)
            ORDER BY timestamp, id
            ''',
            user_id,
            other_id
        )

    async def get_conversations(self, user_id: int) -> List[Conversation]:
        return await self._fetch(
            Conversation,
            '''
            WITH partner_messages AS (
                SELECT
                    CASE WHEN sender_id = $1 THEN receiver_id ELSE sender_id END AS partner_id,
                    content,
                    timestamp,
                    id,
                    (receiver_id = $1 AND NOT read) AS is_unread
                FROM chat_messages
                WHERE sender_id = $1 OR receiver_id = $1
            ),
            latest AS (
                SELECT DISTINCT ON (partner_id) partner_id, content, timestamp
                FROM partner_messages
                ORDER BY partner_id, timestamp DESC, id DESC
            ),
            unread AS (
                SELECT partner_id, COUNT(*) FILTER (WHERE is_unread) AS unread_count
                FROM partner_messages
                GROUP BY partner_id
            )
            SELECT
                u.id AS user_id,
                u.username,
                u.full_name,
                u.role,
                l.content AS last_message,
                l.timestamp AS last_message_at,
                un.unread_count
            FROM latest l
            JOIN users u ON u.id = l.partner_id
            JOIN unread un ON un.partner_id = l.partner_id
            ORDER BY l.timestamp DESC
            ''',
            user_id
        )

    async def mark_messages_read(self, receiver_id: int, sender_id: int) -> int:
        async with self._connection() as conn:
            result = await conn.execute(
                '''
                UPDATE chat_messages SET read = true
                WHERE receiver_id = $1 AND sender_id = $2 AND NOT read
                ''',
                receiver_id,
                sender_id
            )
        # asyncpg returns the command tag, e.g. "UPDATE 3"
        return int(result.split()[-1])

    async def mark_message_read(self, message_id: int, receiver_id: int) -> Optional[ChatMessage]:
        return await self._fetchrow(
            ChatMessage,
            'UPDATE chat_messages SET read = true WHERE id = $1 AND receiver_id = $2 RETURNING *',
            message_id,
            receiver_id
        )

    async def get_unread_count(self, user_id: int) -> int:
        async with self._connection() as conn:
            return await conn.fetchval(
                'SELECT COUNT(*) FROM chat_messages WHERE receiver_id = $1 AND NOT read',
                user_id
            )

    # Feedback

    async def create_feedback(self, data: Dict[str, Any]) -> Feedback:
        return await self._insert('feedback', Feedback, data)

    async def get_feedback_by_user(self, user_id: int) -> List[Feedback]:
        return await self._fetch(
            Feedback,
            'SELECT * FROM feedback WHERE user_id = $1 ORDER BY created_at DESC, id DESC',
            user_id
        )

    # Recycling centres

    async def get_recycling_centers(self) -> List[RecyclingCenter]:
        return await self._fetch(RecyclingCenter, 'SELECT * FROM recycling_centers ORDER BY name')

    async def get_recycling_center(self, center_id: int) -> Optional[RecyclingCenter]:
        return await self._fetchrow(
            RecyclingCenter,
            'SELECT * FROM recycling_centers WHERE id = $1',
            center_id
        )

    async def get_recycling_centers_by_city(self, city: str) -> List[RecyclingCenter]:
        return await self._fetch(
            RecyclingCenter,
            'SELECT * FROM recycling_centers WHERE lower(city) = lower($1) ORDER BY name',
            city
        )

    async def get_recycling_centers_by_waste_type(self, waste_type: str) -> List[RecyclingCenter]:
        return await self._fetch(
            RecyclingCenter,
            'SELECT * FROM recycling_centers WHERE $1 = ANY(waste_types) ORDER BY name',
            waste_type.lower()
        )

    async def create_recycling_center(self, data: Dict[str, Any]) -> RecyclingCenter:
        return await self._insert('recycling_centers', RecyclingCenter, data)

    async def delete_recycling_centers(self) -> int:
        async with self._connection() as conn:
            result = await conn.execute('DELETE FROM recycling_centers')
        return int(result.split()[-1])


__all__ = ['DatabaseStorage']
