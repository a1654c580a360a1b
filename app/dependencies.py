"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, SystemClock
from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import decode_access_token
from app.database import get_db
from app.schemas.principal import Principal
from app.services.identity_service import IdentityService
from app.services.notification_port import AppointmentNotifier, build_notifier

# Security
security = HTTPBearer()

_notifier: AppointmentNotifier | None = None
_clock = SystemClock()


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    token = credentials.credentials
    payload = decode_access_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_identity_service() -> IdentityService:
    """Identity resolver, cached in Redis unless the TTL is zero."""
    if settings.principal_cache_ttl_seconds <= 0:
        return IdentityService()
    return IdentityService(
        cache_manager=CacheManager(get_redis_client()),
        cache_ttl=settings.principal_cache_ttl_seconds,
    )


async def get_current_principal(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    identity: Annotated[IdentityService, Depends(get_identity_service)],
) -> Principal:
    """
    Resolve the caller's roles and bound doctor.

    Args:
        user_id: User ID from JWT token
        db: Database session
        identity: Identity resolver

    Returns:
        Principal for the caller
    """
    return await identity.resolve_principal(db, user_id)


def get_notifier() -> AppointmentNotifier:
    """Process-wide notifier built from settings."""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier(settings)
    return _notifier


def get_clock() -> Clock:
    """Wall clock used for appointment timestamps."""
    return _clock


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
Notifier = Annotated[AppointmentNotifier, Depends(get_notifier)]
AppClock = Annotated[Clock, Depends(get_clock)]
