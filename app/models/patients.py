"""Patient model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from app.models.base import metadata

# Patients are owned by a single doctor
patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("name", Text, nullable=False),
    # WhatsApp contact, E.164 or local digits
    Column("phone", String(32)),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)
