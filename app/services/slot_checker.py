"""Slot collision detection."""

from datetime import date, time
from uuid import UUID

import structlog
from prometheus_client import Counter
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import SlotConflictException
from app.models.appointments import ACTIVE_SLOT_INDEX
from app.services.appointment_store import AppointmentStore

logger = structlog.get_logger(__name__)

UNIQUE_VIOLATION_SQLSTATE = "23505"

SLOT_CONFLICTS = Counter(
    "appointment_slot_conflicts_total",
    "Appointment writes rejected because the slot was taken",
    ["operation", "source"],
)


def is_slot_violation(exc: IntegrityError) -> bool:
    """
    Check whether an integrity error came from the active-slot unique index.

    PostgreSQL reports SQLSTATE 23505 and names the index; SQLite reports
    the indexed columns.
    """
    orig = exc.orig
    message = str(orig)

    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == UNIQUE_VIOLATION_SQLSTATE:
        return ACTIVE_SLOT_INDEX in message

    return (
        "UNIQUE constraint failed: appointments.doctor_id, appointments.date, appointments.time"
        in message
        or ACTIVE_SLOT_INDEX in message
    )


class SlotConflictChecker:
    """Detects whether a doctor's slot is held by an active appointment.

    The read-side check only short-circuits obvious collisions. A free answer
    is not a reservation: two writers can both see the slot free, and only
    the unique index decides which of them wins.
    """

    def __init__(self, store: AppointmentStore, precheck_enabled: bool = True):
        """Initialize checker over a store."""
        self.store = store
        self.precheck_enabled = precheck_enabled

    async def find_active_occupant(
        self,
        doctor_id: UUID,
        slot_date: date,
        slot_time: time,
        exclude_id: UUID | None = None,
    ) -> UUID | None:
        """Return the appointment currently holding the slot, if any."""
        return await self.store.find_active_in_slot(doctor_id, slot_date, slot_time, exclude_id)

    async def ensure_slot_free(
        self,
        operation: str,
        doctor_id: UUID,
        slot_date: date,
        slot_time: time,
        exclude_id: UUID | None = None,
    ) -> None:
        """
        Reject early when a committed active appointment already holds the slot.

        Raises:
            SlotConflictException: If an occupant is observed
        """
        if not self.precheck_enabled:
            return

        occupant = await self.find_active_occupant(doctor_id, slot_date, slot_time, exclude_id)
        if occupant is not None:
            self.record_conflict(operation, "precheck", doctor_id, slot_date, slot_time)
            raise SlotConflictException()

    @staticmethod
    def record_conflict(
        operation: str,
        source: str,
        doctor_id: UUID,
        slot_date: date,
        slot_time: time,
    ) -> None:
        """Count and log a rejected slot write."""
        SLOT_CONFLICTS.labels(operation=operation, source=source).inc()
        logger.info(
            "appointment_slot_conflict",
            operation=operation,
            source=source,
            doctor_id=str(doctor_id),
            date=slot_date.isoformat(),
            time=slot_time.isoformat(),
        )
