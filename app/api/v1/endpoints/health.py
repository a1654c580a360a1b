"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel

from app.config import settings
from app.core.redis_client import check_redis_connection
from app.database import check_database_connection

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Health plus the state of each dependency."""

    database: str
    redis: str
    notifications: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Liveness probe."""
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Health of the database, the principal cache and the notifier.

    The service is degraded, not down, when Redis is unreachable: principals
    are then resolved from the database on every request. Redis is reported
    as disabled when principal caching is switched off.

    Returns:
        Detailed health status including dependencies
    """
    db_healthy = await check_database_connection()

    if settings.principal_cache_ttl_seconds > 0:
        redis_state = "healthy" if await check_redis_connection() else "unhealthy"
    else:
        redis_state = "disabled"

    if not settings.notifications_enabled:
        notifications_state = "disabled"
    elif settings.twilio_configured:
        notifications_state = "configured"
    else:
        notifications_state = "misconfigured"

    healthy = db_healthy and redis_state != "unhealthy"

    return DetailedHealthResponse(
        status="healthy" if healthy else "degraded",
        version=settings.app_version,
        environment=settings.environment,
        database="healthy" if db_healthy else "unhealthy",
        redis=redis_state,
        notifications=notifications_state,
    )


@router.get(
    "/ping",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Simple ping",
)
async def ping() -> dict[str, str]:
    """Pong."""
    return {"message": "pong"}
