"""Authentication module using scrypt password hashes and JWT sessions.

This module provides:
1. Password hashing and verification
2. Registration, login, logout and profile/onboarding updates
3. Session tokens carried in a cookie or an ``Authorization: Bearer`` header
4. The ``get_current_user`` dependency protecting routes
"""

import hashlib
import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError, ExpiredSignatureError

from models import BadgeType, User, UserRole
from storage import Storage, StorageError

logger = logging.getLogger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
SCRYPT_KEY_LENGTH = 64
ONBOARDING_POINTS = 5

# Fields a user may change through PATCH /api/user
PROFILE_FIELDS = {
    'full_name',
    'email',
    'address',
    'phone'
}

ONBOARDING_FIELDS = {
    'organization_type',
    'organization_name',
    'contact_person_name',
    'contact_person_position',
    'contact_person_phone',
    'contact_person_email',
    'is_certified',
    'certification_details'
}

BUSINESS_FIELDS = {
    'business_name',
    'business_type',
    'business_registration',
    'business_description',
    'service_area'
}

ORGANIZATION_REQUIRED_FIELDS = ('organization_type', 'organization_name', 'contact_person_name')
ORGANIZATION_OPTIONAL_FIELDS = ('contact_person_position', 'contact_person_phone', 'contact_person_email')


class AuthError(Exception):
    """Base exception for authentication errors."""
    pass


class InvalidCredentialsError(AuthError):
    """Raised when a username/password pair does not match."""
    pass


class SessionExpiredError(AuthError):
    """Raised when a session has expired."""
    pass


class DuplicateUserError(AuthError):
    """Raised when a username or email is already taken."""
    pass


class ProfileValidationError(AuthError):
    """Raised when profile, onboarding or password input is invalid."""
    pass


def hash_password(password: str) -> str:
    """Hash a password as ``<hex digest>.<hex salt>``."""
    salt = secrets.token_hex(16)
    digest = hashlib.scrypt(
        password.encode(),
        salt=salt.encode(),
        n=16384,
        r=8,
        p=1,
        dklen=SCRYPT_KEY_LENGTH
    )
    return f"{digest.hex()}.{salt}"


def verify_password(supplied: str, stored: str) -> bool:
    """Compare a plaintext password with a stored hash in constant time."""
    try:
        hashed, salt = stored.split('.')
        expected = bytes.fromhex(hashed)
    except ValueError:
        return False
    supplied_digest = hashlib.scrypt(
        supplied.encode(),
        salt=salt.encode(),
        n=16384,
        r=8,
        p=1,
        dklen=SCRYPT_KEY_LENGTH
    )
    return hmac.compare_digest(expected, supplied_digest)


class AuthManager:
    """Manages users, credentials and sessions."""

    def __init__(self, storage: Storage, settings: Dict[str, Any]):
        """Initialize auth manager.

        Args:
            storage: Storage backend holding users and sessions
            settings: Validated application settings
        """
        self.storage = storage
        self.secret = settings['session_secret']
        self.expiry_days = settings['session_expiry_days']
        self.cookie_name = settings['session_cookie_name']
        self.cookie_secure = settings['cookie_secure']

    async def register(self, data: Dict[str, Any]) -> Tuple[User, str]:
        """Create a user and log them in.

        Args:
            data: username, email, password, full_name, and optionally
                role, address and phone

        Returns:
            Tuple of the new user and a session token

        Raises:
            DuplicateUserError: If the username or email is taken
        """
        if await self.storage.get_user_by_username(data['username']):
            raise DuplicateUserError("Username already exists")
        if await self.storage.get_user_by_email(data['email']):
            raise DuplicateUserError("Email already exists")

        record = dict(data)
        record['password'] = hash_password(data['password'])

        try:
            async with self.storage.transaction():
                user = await self.storage.create_user(record)
                await self.storage.create_impact({
                    'user_id': user.id,
                    'water_saved': 0,
                    'co2_reduced': 0,
                    'trees_equivalent': 0,
                    'energy_conserved': 0,
                    'waste_amount': 0
                })
                await self.storage.create_activity(
                    user.id,
                    'registration',
                    'Joined PipaPal'
                )
                await self.storage.award_badge(user.id, BadgeType.ECO_STARTER.value)
        except StorageError as e:
            raise DuplicateUserError(str(e))

        logger.info(f"Registered user {user.id} ({user.role})")
        token, _ = await self.create_session(user)
        return user, token

    async def login(self, username: str, password: str) -> Tuple[User, str]:
        """Check credentials and open a session.

        Raises:
            InvalidCredentialsError: If the username is unknown or the password wrong
        """
        user = await self.storage.get_user_by_username(username)
        if not user or not verify_password(password, user.password):
            raise InvalidCredentialsError("Invalid username or password")

        token, _ = await self.create_session(user)
        return user, token

    async def login_with_google(
        self,
        uid: str,
        email: str,
        display_name: Optional[str] = None
    ) -> Tuple[User, str]:
        """Upsert a user keyed by Google UID, then email, and open a session."""
        user = await self.storage.get_user_by_google_uid(uid)

        if user is None:
            user = await self.storage.get_user_by_email(email)
            if user is not None:
                user = await self.storage.update_user(user.id, {'google_uid': uid})

        if user is None:
            username = await self._unique_username(email.split('@')[0])
            user, token = await self.register({
                'username': username,
                'email': email,
                'password': secrets.token_urlsafe(32),
                'full_name': display_name or username,
                'role': UserRole.HOUSEHOLD.value
            })
            user = await self.storage.update_user(user.id, {'google_uid': uid})
            return user, token

        token, _ = await self.create_session(user)
        return user, token

    async def _unique_username(self, base: str) -> str:
        base = re.sub(r'[^A-Za-z0-9_.-]', '', base) or 'user'
        candidate = base
        while await self.storage.get_user_by_username(candidate):
            candidate = f"{base}{secrets.randbelow(10000)}"
        return candidate

    async def create_session(self, user: User) -> Tuple[str, datetime]:
        """Issue a JWT for ``user`` and persist it as a session row."""
        expires_at = datetime.now(timezone.utc) + timedelta(days=self.expiry_days)
        token = jwt.encode(
            {
                'sub': str(user.id),
                'exp': int(expires_at.timestamp()),
                'jti': secrets.token_hex(8)
            },
            self.secret,
            algorithm=JWT_ALGORITHM
        )
        await self.storage.create_session(token, user.id, expires_at)
        return token, expires_at

    async def verify_session(self, token: str) -> User:
        """Verify a session token.

        Returns:
            The authenticated user

        Raises:
            SessionExpiredError: If the token or session has expired
            AuthError: For other verification errors
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[JWT_ALGORITHM])
            user_id = int(payload['sub'])
        except ExpiredSignatureError:
            raise SessionExpiredError("Session has expired")
        except (JWTError, KeyError, ValueError) as e:
            raise AuthError(f"Invalid token: {str(e)}")

        session = await self.storage.get_session(token)
        if not session or session['revoked'] or session['user_id'] != user_id:
            raise AuthError("Session not found or revoked")
        if session['expires_at'] < datetime.now(timezone.utc):
            raise SessionExpiredError("Session has expired")

        user = await self.storage.get_user(user_id)
        if not user:
            raise AuthError("User no longer exists")
        return user

    async def logout(self, token: str) -> None:
        await self.storage.revoke_session(token)

    async def update_profile(self, user: User, updates: Dict[str, Any]) -> User:
        """Apply allowed profile and onboarding fields.

        Raises:
            DuplicateUserError: If the new email belongs to another user
        """
        allowed = {
            k: v for k, v in updates.items()
            if k in PROFILE_FIELDS | ONBOARDING_FIELDS and v is not None
        }

        email = allowed.get('email')
        if email and email != user.email:
            existing = await self.storage.get_user_by_email(email)
            if existing and existing.id != user.id:
                raise DuplicateUserError("Email already in use")

        return await self.storage.update_user(user.id, allowed)

    async def update_business(self, user: User, updates: Dict[str, Any]) -> User:
        """Update business profile fields (collectors, recyclers, organizations)."""
        if user.role == UserRole.HOUSEHOLD.value:
            raise ProfileValidationError("Business profiles are not available for households")
        allowed = {k: v for k, v in updates.items() if k in BUSINESS_FIELDS and v is not None}
        return await self.storage.update_user(user.id, allowed)

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not current_password or not new_password:
            raise ProfileValidationError("Current and new password are required")
        if not verify_password(current_password, user.password):
            raise ProfileValidationError("Current password is incorrect")
        await self.storage.update_user(user.id, {'password': hash_password(new_password)})

    async def complete_onboarding(self, user: User, data: Dict[str, Any]) -> User:
        """Record role-specific onboarding details.

        Organizations must supply their type, name and contact person.
        Collectors and recyclers may supply certification details. The
        ``profile_complete`` badge and the onboarding points are only
        awarded the first time.

        Raises:
            ProfileValidationError: If a required organization field is missing
        """
        updates: Dict[str, Any] = {'onboarding_completed': True}

        if user.role == UserRole.ORGANIZATION.value:
            for field in ORGANIZATION_REQUIRED_FIELDS:
                if not data.get(field):
                    raise ProfileValidationError(f"Missing required field: {field}")
                updates[field] = data[field]
            for field in ORGANIZATION_OPTIONAL_FIELDS:
                if data.get(field):
                    updates[field] = data[field]
        elif user.role in (UserRole.COLLECTOR.value, UserRole.RECYCLER.value):
            if data.get('is_certified') is not None:
                updates['is_certified'] = data['is_certified']
                if data['is_certified'] and data.get('certification_details'):
                    updates['certification_details'] = data['certification_details']

        async with self.storage.transaction():
            current = await self.storage.get_user(user.id, lock=True)
            if current is None:
                raise AuthError("User no longer exists")
            first_time = not current.onboarding_completed

            updated = await self.storage.update_user(user.id, updates)
            if first_time:
                await self.storage.create_activity(
                    user.id,
                    'onboarding',
                    'Completed profile setup',
                    ONBOARDING_POINTS
                )
                updated = await self.storage.increment_sustainability_score(user.id, ONBOARDING_POINTS)
                await self.storage.award_badge(user.id, BadgeType.PROFILE_COMPLETE.value)

        logger.info(f"User {user.id} completed onboarding")
        return updated

    def token_from_request(
        self,
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = None
    ) -> Optional[str]:
        """Return the session token from the Bearer header or the session cookie."""
        if credentials and credentials.credentials:
            return credentials.credentials
        return request.cookies.get(self.cookie_name)


# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=False,  # Fall back to the session cookie
    description="JWT Bearer token or session cookie"
)


def get_auth_manager(request: Request) -> AuthManager:
    return request.app.state.auth


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(auth_scheme)
) -> User:
    """FastAPI dependency for getting the authenticated user.

    Raises:
        HTTPException: 401 if no valid session is presented
    """
    manager = get_auth_manager(request)
    token = manager.token_from_request(request, credentials)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    try:
        return await manager.verify_session(token)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired"
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )


# Export public interface
__all__ = [
    'AuthManager',
    'AuthError',
    'InvalidCredentialsError',
    'SessionExpiredError',
    'DuplicateUserError',
    'ProfileValidationError',
    'hash_password',
    'verify_password',
    'get_auth_manager',
    'get_current_user',
    'auth_scheme'
]
