"""Initial schema - doctors, patients, roles, schedules and appointments.

Revision ID: 001
Revises:
Create Date: 2026-10-16 00:00:00.000000

Slot exclusivity is enforced by a partial unique index on
(doctor_id, date, time) covering every appointment that is not cancelled.

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_SLOT_INDEX = "uq_appointments_doctor_slot_active"


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    """Create the scheduling schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "doctors",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("prefix", sa.String(20), nullable=True),
        _created_at(),
        sa.UniqueConstraint("user_id", name="uq_doctors_user_id"),
    )
    op.create_index("ix_doctors_user_id", "doctors", ["user_id"])

    op.create_table(
        "patients",
        _uuid_pk(),
        sa.Column(
            "doctor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("doctors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        _created_at(),
    )
    op.create_index("ix_patients_doctor_id", "patients", ["doctor_id"])

    op.create_table(
        "user_roles",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "role", name="user_role"),
        sa.CheckConstraint(
            "role IN ('admin', 'secretary', 'doctor')",
            name="ck_user_roles_role",
        ),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])

    op.create_table(
        "doctor_schedules",
        _uuid_pk(),
        sa.Column(
            "doctor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("doctors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_doctor_schedules_day_of_week"),
        sa.CheckConstraint("end_time > start_time", name="ck_doctor_schedules_block_order"),
    )
    op.create_index("ix_doctor_schedules_doctor_id", "doctor_schedules", ["doctor_id"])

    op.create_table(
        "appointments",
        _uuid_pk(),
        sa.Column(
            "doctor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("doctors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "patient_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("patients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time", sa.Time(), nullable=False),
        sa.Column("appointment_at", sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("status", sa.Text(), nullable=False, server_default="scheduled"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("confirmation_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reminder_24h_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reminder_24h_sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("reschedule_notified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'cancelled', 'completed', 'no_show')",
            name="ck_appointments_status",
        ),
        sa.CheckConstraint(
            "duration_minutes BETWEEN 15 AND 480",
            name="ck_appointments_duration_minutes",
        ),
    )

    op.create_index("ix_appointments_doctor_id", "appointments", ["doctor_id"])
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_appointment_at", "appointments", ["appointment_at"])
    op.create_index(
        ACTIVE_SLOT_INDEX,
        "appointments",
        ["doctor_id", "date", "time"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
    )


def downgrade() -> None:
    """Drop the scheduling schema."""
    op.drop_index(ACTIVE_SLOT_INDEX, table_name="appointments")
    op.drop_index("ix_appointments_appointment_at", table_name="appointments")
    op.drop_index("ix_appointments_patient_id", table_name="appointments")
    op.drop_index("ix_appointments_doctor_id", table_name="appointments")
    op.drop_table("appointments")

    op.drop_index("ix_doctor_schedules_doctor_id", table_name="doctor_schedules")
    op.drop_table("doctor_schedules")

    op.drop_index("ix_user_roles_user_id", table_name="user_roles")
    op.drop_table("user_roles")

    op.drop_index("ix_patients_doctor_id", table_name="patients")
    op.drop_table("patients")

    op.drop_index("ix_doctors_user_id", table_name="doctors")
    op.drop_table("doctors")
