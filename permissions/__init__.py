"""Role based permissions.

A static table maps every permission to the roles holding it. Routes guard
themselves with the dependency factories below:

- ``require_permission`` / ``require_any_permission`` check the table
- ``require_role`` checks the role directly
- ``require_ownership`` loads a resource and checks the caller owns it or
  is its assigned collector

Unauthenticated requests get 401, failed checks 403 and missing
resources 404.
"""

import logging
from typing import Any, Awaitable, Callable, FrozenSet, NamedTuple, Optional

from fastapi import Depends, HTTPException, Request, status

from auth import get_current_user
from models import User, UserRole

logger = logging.getLogger(__name__)


class Permission(NamedTuple):
    name: str
    roles: FrozenSet[str]


_OWNERS = frozenset({UserRole.HOUSEHOLD.value, UserRole.ORGANIZATION.value})
_ALL_ROLES = frozenset(role.value for role in UserRole)


class Permissions:
    """Every permission PipaPal checks."""
    REQUEST_PICKUP = Permission('request_pickup', _OWNERS)
    SCHEDULE_RECURRING_PICKUP = Permission('schedule_recurring_pickup', _OWNERS)
    VIEW_COLLECTOR_LOCATION = Permission('view_collector_location', _OWNERS)
    ACCEPT_PICKUP_JOBS = Permission('accept_pickup_jobs', frozenset({UserRole.COLLECTOR.value}))
    MARK_JOB_COMPLETE = Permission('mark_job_complete', frozenset({UserRole.COLLECTOR.value}))
    LIST_MATERIALS = Permission('list_materials', frozenset({UserRole.COLLECTOR.value}))
    VIEW_PICKUP_HISTORY = Permission('view_pickup_history', _ALL_ROLES)
    VIEW_WASTE_LISTINGS = Permission('view_waste_listings', frozenset({UserRole.RECYCLER.value}))
    BUY_RECYCLABLES = Permission('buy_recyclables', frozenset({UserRole.RECYCLER.value}))
    VIEW_MARKETPLACE = Permission(
        'view_marketplace',
        frozenset({UserRole.RECYCLER.value, UserRole.COLLECTOR.value})
    )
    ACCESS_ANALYTICS = Permission(
        'access_analytics',
        frozenset({UserRole.RECYCLER.value, UserRole.ORGANIZATION.value})
    )


def has_permission(role: Optional[str], permission: Permission) -> bool:
    """Return True if ``role`` holds ``permission``."""
    if role is None:
        return False
    return str(getattr(role, 'value', role)) in permission.roles


def require_permission(permission: Permission) -> Callable[..., Awaitable[User]]:
    """Dependency allowing only users whose role holds ``permission``."""
    async def dependency(user: User = Depends(get_current_user)) -> User:
        if not has_permission(user.role, permission):
            logger.info(f"User {user.id} ({user.role}) denied {permission.name}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You don't have permission to perform this action"
            )
        return user
    return dependency


def require_any_permission(*permissions: Permission) -> Callable[..., Awaitable[User]]:
    """Dependency allowing users holding at least one of ``permissions``."""
    async def dependency(user: User = Depends(get_current_user)) -> User:
        if not any(has_permission(user.role, p) for p in permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You don't have permission to perform this action"
            )
        return user
    return dependency


def require_role(*roles: str) -> Callable[..., Awaitable[User]]:
    """Dependency allowing only the given roles."""
    allowed = {str(getattr(r, 'value', r)) for r in roles}

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied for your role"
            )
        return user
    return dependency


def is_owner_or_assigned(user: User, resource: Any) -> bool:
    """True if ``user`` owns ``resource`` or is its assigned collector."""
    if getattr(resource, 'user_id', None) == user.id:
        return True
    return (
        user.role == UserRole.COLLECTOR.value
        and getattr(resource, 'collector_id', None) == user.id
    )


def require_ownership(
    fetcher: Callable[[Request, int], Awaitable[Any]],
    param: str = 'id'
) -> Callable[..., Awaitable[Any]]:
    """Dependency loading a resource and checking the caller may touch it.

    Args:
        fetcher: Coroutine taking the request and the resource id
        param: Name of the path parameter holding the id

    Returns:
        A dependency yielding the loaded resource
    """
    async def dependency(request: Request, user: User = Depends(get_current_user)) -> Any:
        try:
            resource_id = int(request.path_params[param])
        except (KeyError, ValueError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid resource id"
            )

        resource = await fetcher(request, resource_id)
        if resource is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Resource not found"
            )
        if not is_owner_or_assigned(user, resource):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You don't have permission to access this resource"
            )
        return resource
    return dependency


__all__ = [
    'Permission', 'Permissions', 'has_permission', 'require_permission',
    'require_any_permission', 'require_role', 'require_ownership',
    'is_owner_or_assigned'
]
