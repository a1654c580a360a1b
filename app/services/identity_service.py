"""Resolve the authenticated user into a principal."""

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.redis_client import CacheManager
from app.models.doctors import doctors
from app.models.user_roles import user_roles
from app.schemas.principal import Principal, Role

logger = structlog.get_logger(__name__)


class IdentityService:
    """Looks up roles and the bound doctor record for a user."""

    def __init__(self, cache_manager: CacheManager | None = None, cache_ttl: int = 60):
        """Initialize service with optional cache manager."""
        self.cache = cache_manager
        self.cache_ttl = cache_ttl

    @staticmethod
    def _get_principal_cache_key(user_id: UUID) -> str:
        """Generate cache key for a principal."""
        return f"principal:{user_id}"

    async def resolve_principal(self, db: AsyncSession, user_id: UUID) -> Principal:
        """
        Build the principal for a user.

        Unknown role names are ignored. A user without roles still resolves,
        with an empty role set, and is denied by every ownership check.

        Args:
            db: Database session
            user_id: Authenticated user ID

        Returns:
            Principal with roles and bound doctor
        """
        if self.cache:
            cached = self.cache.get_json(self._get_principal_cache_key(user_id))
            if cached:
                return Principal.model_validate(cached)

        roles_result = await db.execute(
            select(user_roles.c.role).where(user_roles.c.user_id == user_id)
        )
        roles = set()
        for (role_name,) in roles_result.all():
            try:
                roles.add(Role(role_name))
            except ValueError:
                logger.warning("unknown_role_ignored", user_id=str(user_id), role=role_name)

        doctor_result = await db.execute(select(doctors.c.id).where(doctors.c.user_id == user_id))
        bound_doctor_id = doctor_result.scalar_one_or_none()

        principal = Principal(
            user_id=user_id,
            roles=frozenset(roles),
            bound_doctor_id=bound_doctor_id,
        )

        if self.cache:
            self.cache.set_json(
                self._get_principal_cache_key(user_id),
                principal.model_dump(mode="json"),
                ttl=self.cache_ttl,
            )

        return principal

    def invalidate(self, user_id: UUID) -> None:
        """Drop a cached principal after its roles or doctor binding change."""
        if self.cache:
            self.cache.delete(self._get_principal_cache_key(user_id))
