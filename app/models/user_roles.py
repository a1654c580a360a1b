"""User role assignments using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)

from app.models.base import metadata

user_roles = Table(
    "user_roles",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("user_id", Uuid, nullable=False, index=True),
    Column("role", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "role", name="user_role"),
    CheckConstraint("role IN ('admin', 'secretary', 'doctor')", name="role"),
)
