"""
FastAPI dependencies for authentication, authorization and shared services.

Collaborators are built once by ``create_app`` and kept on ``app.state``;
these helpers hand them to the routes.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheInvalidator, RedisCache
from ..config import Settings
from ..database import get_db
from ..services.booking_service import BookingService
from ..services.category_service import CategoryService
from ..services.event_service import EventService
from ..services.expiry_sweeper import ExpirySweeper
from ..services.image_store import S3ImageStore
from ..services.notification_service import NotificationDispatcher
from .auth import AuthenticatedUser, TokenAuthProvider, UserRole
from .exceptions import AuthenticationError, ForbiddenError

# auto_error is off so a missing header becomes our 401 body, not FastAPI's 403.
security = HTTPBearer(auto_error=False)


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> RedisCache:
    return request.app.state.cache


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


def get_image_store(request: Request) -> S3ImageStore:
    return request.app.state.image_store


def get_sweeper(request: Request) -> ExpirySweeper:
    return request.app.state.sweeper


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    """
    Get the current authenticated user from the bearer token.

    Raises:
        AuthenticationError: If no bearer token is present
        InvalidTokenError: If the token does not verify
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()

    provider: TokenAuthProvider = request.app.state.auth_provider
    user = provider.verify(credentials.credentials)
    request.state.user = user
    return user


def require_roles(*roles: UserRole):
    """
    Dependency factory restricting a route to the given roles.

    Usage:
        @router.post("", dependencies=[Depends(require_roles(UserRole.ADMIN))])
    """
    allowed = set(roles)

    async def checker(current_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        if current_user.role not in allowed:
            raise ForbiddenError(
                "Not enough permissions",
                required_permission=" or ".join(sorted(role.value for role in allowed))
            )
        return current_user

    return checker


def get_event_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> EventService:
    return EventService(db, cache=get_cache(request), image_store=get_image_store(request))


def get_category_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> CategoryService:
    return CategoryService(db, cache=get_cache(request))


def get_booking_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> BookingService:
    return BookingService(
        db,
        get_settings_dep(request),
        notifier=get_notifier(request),
        invalidator=CacheInvalidator(get_cache(request)),
    )
