"""Create the schema from metadata and optionally grant a user a role.

Usage:
    python scripts/init_db.py
    python scripts/init_db.py --grant <user_id> admin
"""

import asyncio
import sys
from uuid import UUID

from sqlalchemy import insert, text

from app.config import settings
from app.core.redis_client import CacheManager, get_redis_client
from app.database import engine
from app.models import metadata, user_roles
from app.schemas.principal import Role
from app.services.identity_service import IdentityService


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        await conn.run_sync(metadata.create_all)

    print("✓ Database initialized successfully!")


async def grant_role(user_id: UUID, role: Role) -> None:
    """Give a user a role."""
    async with engine.begin() as conn:
        await conn.execute(insert(user_roles).values(user_id=user_id, role=role.value))

    if settings.principal_cache_ttl_seconds > 0:
        IdentityService(cache_manager=CacheManager(get_redis_client())).invalidate(user_id)

    print(f"✓ Granted {role.value} to {user_id}")


async def main(argv: list[str]) -> None:
    await init_db()

    if len(argv) == 3 and argv[0] == "--grant":
        await grant_role(UUID(argv[1]), Role(argv[2]))

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
