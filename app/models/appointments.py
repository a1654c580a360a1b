"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Table,
    Text,
    Time,
    Uuid,
    text,
)

from app.models.base import metadata

# Partial unique index backing slot exclusivity. Cancelled rows free their slot.
ACTIVE_SLOT_INDEX = "uq_appointments_doctor_slot_active"
ACTIVE_SLOT_PREDICATE = "status <> 'cancelled'"

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership (immutable after creation)
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    # Slot, clinic-local
    Column("date", Date, nullable=False),
    Column("time", Time, nullable=False),
    Column("appointment_at", DateTime, nullable=False, index=True),
    Column("duration_minutes", Integer, nullable=False, server_default=text("60")),
    # Status management
    Column("status", Text, nullable=False, server_default="scheduled"),
    Column("notes", Text, nullable=True),
    # Notification bookkeeping
    Column("confirmation_sent", Boolean, nullable=False, server_default=text("false")),
    Column("reminder_24h_sent", Boolean, nullable=False, server_default=text("false")),
    Column("reminder_24h_sent_at", DateTime(timezone=True), nullable=True),
    Column("reschedule_notified_at", DateTime(timezone=True), nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('scheduled', 'confirmed', 'cancelled', 'completed', 'no_show')",
        name="status",
    ),
    CheckConstraint(
        "duration_minutes BETWEEN 15 AND 480",
        name="duration_minutes",
    ),
    Index(
        ACTIVE_SLOT_INDEX,
        "doctor_id",
        "date",
        "time",
        unique=True,
        postgresql_where=text(ACTIVE_SLOT_PREDICATE),
        sqlite_where=text(ACTIVE_SLOT_PREDICATE),
    ),
)
