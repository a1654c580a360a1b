"""Doctor model definitions using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    Time,
    Uuid,
    func,
)

from app.models.base import metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Auth identity bound to this doctor record
    Column("user_id", Uuid, nullable=True, unique=True, index=True),
    Column("name", Text, nullable=False),
    # Display prefix for messages ("Dr.", "Dra.")
    Column("prefix", String(20)),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

# Weekly working blocks. day_of_week: 0 = Sunday ... 6 = Saturday
doctor_schedules = Table(
    "doctor_schedules",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("day_of_week", Integer, nullable=False),
    Column("start_time", Time, nullable=False),
    Column("end_time", Time, nullable=False),
    CheckConstraint("day_of_week BETWEEN 0 AND 6", name="day_of_week"),
    CheckConstraint("end_time > start_time", name="block_order"),
)
