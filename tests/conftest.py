"""Shared fixtures. Everything runs against MemStorage."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest
import pytest_asyncio
from starlette.websockets import WebSocketState

from auth import AuthManager
from config import DEFAULTS, validate_settings
from models import User
from notifications import ConnectionRegistry
from storage import MemStorage


class FakeWebSocket:
    """Records the frames pushed to it."""

    def __init__(self, connected: bool = True, fail: bool = False):
        self.application_state = WebSocketState.CONNECTED if connected else WebSocketState.DISCONNECTED
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(data)

    def frames(self, message_type: str) -> List[Dict[str, Any]]:
        return [f for f in self.sent if f["type"] == message_type]


def tomorrow() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=1)


@pytest.fixture
def settings() -> Dict[str, Any]:
    return validate_settings({**DEFAULTS, 'session_secret': 'test-secret'})


@pytest_asyncio.fixture
async def storage():
    """Create and return an initialized MemStorage."""
    storage = MemStorage()
    await storage.initialize()
    yield storage
    await storage.close()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def auth_manager(storage, settings) -> AuthManager:
    return AuthManager(storage, settings)


@pytest_asyncio.fixture
async def make_user(auth_manager):
    """Factory registering users with the given role."""
    async def factory(username: str, role: str = 'household', **extra) -> User:
        user, _ = await auth_manager.register({
            'username': username,
            'email': f"{username}@example.com",
            'password': 'secret123',
            'full_name': username.title(),
            'role': role,
            **extra
        })
        return user
    return factory


@pytest_asyncio.fixture
async def household(make_user) -> User:
    return await make_user('alice', 'household')


@pytest_asyncio.fixture
async def collector(make_user) -> User:
    return await make_user('bob', 'collector')


@pytest_asyncio.fixture
async def recycler(make_user) -> User:
    return await make_user('carol', 'recycler')
