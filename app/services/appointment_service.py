"""Appointment lifecycle: create, reschedule, cancel, annotate, close out."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, SystemClock
from app.core.exceptions import (
    InternalException,
    NotFoundException,
    SlotConflictException,
    ValidationException,
)
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentMutationResponse,
    AppointmentNotesUpdate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    NotificationOutcome,
)
from app.schemas.principal import Principal
from app.services.appointment_store import AppointmentStore
from app.services.authorization import ensure_authorized, scope_doctor_filter
from app.services.notification_port import (
    AppointmentNotifier,
    NotificationKind,
    NullNotifier,
    PatientContact,
    doctor_display_name,
)
from app.services.slot_checker import SlotConflictChecker, is_slot_violation

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.COMPLETED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.CANCELLED,
            AppointmentStatus.COMPLETED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# A missed appointment can be booked again; cancelled and completed ones cannot.
RESCHEDULABLE = frozenset(
    {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.NO_SHOW,
    }
)

# Targets reachable through update_status. Cancel and reschedule have their
# own operations; patient confirmation happens outside this service.
CLOSING_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW})


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Check the appointment state machine."""
    return target in ALLOWED_TRANSITIONS[current]


def statuses_leading_to(target: AppointmentStatus) -> frozenset[AppointmentStatus]:
    """Statuses from which ``target`` can be reached."""
    return frozenset(
        status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )


class AppointmentService:
    """Service for managing the appointment lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: AppointmentNotifier | None = None,
        clock: Clock | None = None,
        precheck_enabled: bool | None = None,
        default_duration_minutes: int | None = None,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.store = AppointmentStore(db)
        self.slots = SlotConflictChecker(
            self.store,
            settings.slot_precheck_enabled if precheck_enabled is None else precheck_enabled,
        )
        self.notifier = notifier or NullNotifier()
        self.clock = clock or SystemClock()
        self.default_duration_minutes = (
            default_duration_minutes or settings.default_duration_minutes
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_appointment(
        self,
        principal: Principal,
        data: AppointmentCreate,
    ) -> AppointmentMutationResponse:
        """
        Book a new appointment.

        Args:
            principal: Caller
            data: Validated creation payload

        Returns:
            Created appointment and confirmation outcome

        Raises:
            ForbiddenException: Caller may not book for this doctor
            NotFoundException: Doctor missing, or patient missing or owned by
                another doctor
            SlotConflictException: Slot held by another active appointment
            InternalException: Storage failure
        """
        ensure_authorized(principal, data.doctor_id)

        doctor = await self.store.get_doctor(data.doctor_id)
        if not doctor:
            raise NotFoundException("Doctor not found")

        patient = await self.store.get_patient_for_doctor(data.patient_id, data.doctor_id)
        if not patient:
            raise NotFoundException("Patient not found")

        await self.slots.ensure_slot_free("create", data.doctor_id, data.date, data.time)

        now = self.clock.now()
        values = {
            "doctor_id": data.doctor_id,
            "patient_id": data.patient_id,
            "date": data.date,
            "time": data.time,
            "appointment_at": datetime.combine(data.date, data.time),
            "duration_minutes": data.duration_minutes or self.default_duration_minutes,
            "status": AppointmentStatus.SCHEDULED.value,
            "notes": data.notes,
            "confirmation_sent": False,
            "reminder_24h_sent": False,
            "reminder_24h_sent_at": None,
            "reschedule_notified_at": None,
            "created_at": now,
            "updated_at": now,
        }

        async with self._guarded_write("create", data.doctor_id, data.date, data.time):
            row = await self.store.insert(values)

        logger.info(
            "appointment_created",
            appointment_id=str(row["id"]),
            doctor_id=str(row["doctor_id"]),
            date=row["date"].isoformat(),
            time=row["time"].isoformat(),
            user_id=str(principal.user_id),
        )

        notification = await self._notify(NotificationKind.CONFIRMATION, row, patient, doctor)
        if notification.sent:
            row = await self._mark_confirmation_sent(row)

        return AppointmentMutationResponse(
            appointment=AppointmentResponse.model_validate(row),
            notification=notification,
        )

    async def reschedule_appointment(
        self,
        principal: Principal,
        appointment_id: UUID,
        data: AppointmentReschedule,
    ) -> AppointmentMutationResponse:
        """
        Move an appointment to a new slot.

        The doctor never changes. The appointment returns to ``scheduled`` and
        its confirmation and reminder bookkeeping is reset, since earlier
        messages described the old slot.

        Raises:
            NotFoundException: Appointment missing
            ForbiddenException: Caller may not act on the appointment's doctor
            ValidationException: Appointment is cancelled or completed
            SlotConflictException: Destination held by another active appointment
            InternalException: Storage failure
        """
        current = await self._load(appointment_id)
        ensure_authorized(principal, current["doctor_id"])

        status = AppointmentStatus(current["status"])
        if status not in RESCHEDULABLE:
            raise ValidationException.for_field(
                "status", f"Cannot reschedule a {status.value} appointment"
            )

        doctor_id = current["doctor_id"]
        doctor = await self.store.get_doctor(doctor_id)
        patient = await self.store.get_patient_for_doctor(current["patient_id"], doctor_id)

        await self.slots.ensure_slot_free(
            "reschedule", doctor_id, data.date, data.time, exclude_id=appointment_id
        )

        now = self.clock.now()
        values: dict[str, Any] = {
            "date": data.date,
            "time": data.time,
            "appointment_at": datetime.combine(data.date, data.time),
            "status": AppointmentStatus.SCHEDULED.value,
            "confirmation_sent": False,
            "reminder_24h_sent": False,
            "reminder_24h_sent_at": None,
            "reschedule_notified_at": now,
            "updated_at": now,
        }
        if data.duration_minutes is not None:
            values["duration_minutes"] = data.duration_minutes
        if "notes" in data.model_fields_set:
            values["notes"] = data.notes

        async with self._guarded_write("reschedule", doctor_id, data.date, data.time):
            row = await self.store.update(appointment_id, values, expected_statuses=RESCHEDULABLE)

        if row is None:
            # Cancelled or closed by someone else since it was loaded
            latest = await self._reload_after_missed_write(appointment_id)
            raise ValidationException.for_field(
                "status", f"Cannot reschedule a {latest['status']} appointment"
            )

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment_id),
            doctor_id=str(doctor_id),
            from_date=current["date"].isoformat(),
            from_time=current["time"].isoformat(),
            date=data.date.isoformat(),
            time=data.time.isoformat(),
            user_id=str(principal.user_id),
        )

        if doctor and patient:
            notification = await self._notify(NotificationKind.RESCHEDULE, row, patient, doctor)
        else:
            notification = NotificationOutcome(error="Patient contact unavailable")

        return AppointmentMutationResponse(
            appointment=AppointmentResponse.model_validate(row),
            notification=notification,
        )

    async def cancel_appointment(
        self,
        principal: Principal,
        appointment_id: UUID,
    ) -> AppointmentMutationResponse:
        """
        Cancel an appointment, freeing its slot.

        Cancelling an already cancelled appointment returns it unchanged.

        Raises:
            NotFoundException: Appointment missing
            ForbiddenException: Caller may not act on the appointment's doctor
            ValidationException: Appointment already completed or missed
        """
        current = await self._load(appointment_id)
        ensure_authorized(principal, current["doctor_id"])

        status = AppointmentStatus(current["status"])
        if status is AppointmentStatus.CANCELLED:
            return AppointmentMutationResponse(appointment=AppointmentResponse.model_validate(current))

        if not can_transition(status, AppointmentStatus.CANCELLED):
            raise ValidationException.for_field(
                "status", f"Cannot cancel a {status.value} appointment"
            )

        now = self.clock.now()
        async with self._guarded_write("cancel", current["doctor_id"]):
            row = await self.store.update(
                appointment_id,
                {
                    "status": AppointmentStatus.CANCELLED.value,
                    "cancelled_at": now,
                    "updated_at": now,
                },
                expected_statuses=statuses_leading_to(AppointmentStatus.CANCELLED),
            )

        if row is None:
            latest = await self._reload_after_missed_write(appointment_id)
            if latest["status"] == AppointmentStatus.CANCELLED.value:
                return AppointmentMutationResponse(appointment=AppointmentResponse.model_validate(latest))
            raise ValidationException.for_field(
                "status", f"Cannot cancel a {latest['status']} appointment"
            )

        logger.info(
            "appointment_cancelled",
            appointment_id=str(appointment_id),
            doctor_id=str(row["doctor_id"]),
            user_id=str(principal.user_id),
        )

        return AppointmentMutationResponse(appointment=AppointmentResponse.model_validate(row))

    async def update_notes(
        self,
        principal: Principal,
        appointment_id: UUID,
        data: AppointmentNotesUpdate,
    ) -> AppointmentMutationResponse:
        """Replace an appointment's notes. Allowed in every status."""
        current = await self._load(appointment_id)
        ensure_authorized(principal, current["doctor_id"])

        async with self._guarded_write("update_notes", current["doctor_id"]):
            row = await self.store.update(
                appointment_id,
                {"notes": data.notes, "updated_at": self.clock.now()},
            )

        if row is None:
            raise NotFoundException("Appointment not found")

        logger.info(
            "appointment_notes_updated",
            appointment_id=str(appointment_id),
            user_id=str(principal.user_id),
        )

        return AppointmentMutationResponse(appointment=AppointmentResponse.model_validate(row))

    async def update_status(
        self,
        principal: Principal,
        appointment_id: UUID,
        data: AppointmentStatusUpdate,
    ) -> AppointmentMutationResponse:
        """
        Close out an appointment as completed or no-show.

        Raises:
            ValidationException: Target status not allowed here or not
                reachable from the current status
        """
        if data.status not in CLOSING_STATUSES:
            raise ValidationException.for_field(
                "status", "Status can only be set to completed or no_show"
            )

        current = await self._load(appointment_id)
        ensure_authorized(principal, current["doctor_id"])

        status = AppointmentStatus(current["status"])
        if status is data.status:
            return AppointmentMutationResponse(appointment=AppointmentResponse.model_validate(current))

        if not can_transition(status, data.status):
            raise ValidationException.for_field(
                "status", f"Cannot move a {status.value} appointment to {data.status.value}"
            )

        async with self._guarded_write("update_status", current["doctor_id"]):
            row = await self.store.update(
                appointment_id,
                {"status": data.status.value, "updated_at": self.clock.now()},
                expected_statuses=statuses_leading_to(data.status),
            )

        if row is None:
            latest = await self._reload_after_missed_write(appointment_id)
            if latest["status"] == data.status.value:
                return AppointmentMutationResponse(appointment=AppointmentResponse.model_validate(latest))
            raise ValidationException.for_field(
                "status", f"Cannot move a {latest['status']} appointment to {data.status.value}"
            )

        logger.info(
            "appointment_status_updated",
            appointment_id=str(appointment_id),
            old_status=status.value,
            new_status=data.status.value,
            user_id=str(principal.user_id),
        )

        return AppointmentMutationResponse(appointment=AppointmentResponse.model_validate(row))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_appointment(
        self,
        principal: Principal,
        appointment_id: UUID,
    ) -> AppointmentResponse:
        """Fetch an appointment the caller may see."""
        row = await self._load(appointment_id)
        ensure_authorized(principal, row["doctor_id"])
        return AppointmentResponse.model_validate(row)

    async def list_appointments(
        self,
        principal: Principal,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """List appointments; doctors only ever see their own agenda."""
        doctor_id = scope_doctor_filter(principal, filters.doctor_id)
        scoped = filters.model_copy(update={"doctor_id": doctor_id})

        total, rows = await self.store.search(scoped)

        return AppointmentListResponse(
            total=total,
            page=scoped.page,
            page_size=scoped.page_size,
            items=[AppointmentResponse.model_validate(row) for row in rows],
        )

    async def list_by_doctor(
        self,
        principal: Principal,
        doctor_id: UUID,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[AppointmentResponse]:
        """A doctor's agenda, optionally bounded by date."""
        ensure_authorized(principal, doctor_id)
        rows = await self.store.list_by_doctor(doctor_id, from_date, to_date)
        return [AppointmentResponse.model_validate(row) for row in rows]

    async def list_by_date_range(
        self,
        principal: Principal,
        from_date: date,
        to_date: date,
    ) -> list[AppointmentResponse]:
        """Every visible appointment between two dates inclusive."""
        if to_date < from_date:
            raise ValidationException.for_field("to_date", "to_date must not be before from_date")

        doctor_id = scope_doctor_filter(principal, None)
        rows = await self.store.list_by_date_range(from_date, to_date, doctor_id)
        return [AppointmentResponse.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, appointment_id: UUID) -> dict[str, Any]:
        row = await self.store.get(appointment_id)
        if not row:
            raise NotFoundException("Appointment not found")
        return row

    async def _reload_after_missed_write(self, appointment_id: UUID) -> dict[str, Any]:
        """Current row after a status-guarded update matched nothing."""
        row = await self._load(appointment_id)
        logger.info(
            "appointment_write_superseded",
            appointment_id=str(appointment_id),
            status=row["status"],
        )
        return row

    @asynccontextmanager
    async def _guarded_write(
        self,
        operation: str,
        doctor_id: UUID,
        slot_date: date | None = None,
        slot_time: time | None = None,
    ) -> AsyncIterator[None]:
        """
        Run one write and commit it, translating storage failures.

        A unique-index violation on the active slot becomes a slot conflict;
        nothing of the failed write survives the rollback.
        """
        try:
            yield
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if slot_date is not None and slot_time is not None and is_slot_violation(e):
                self.slots.record_conflict(operation, "constraint", doctor_id, slot_date, slot_time)
                raise SlotConflictException() from e
            logger.error("appointment_write_rejected", operation=operation, error=str(e.orig))
            raise InternalException() from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("appointment_write_failed", operation=operation, error=str(e))
            raise InternalException() from e

    async def _notify(
        self,
        kind: NotificationKind,
        row: dict[str, Any],
        patient: dict[str, Any],
        doctor: dict[str, Any],
    ) -> NotificationOutcome:
        """Attempt one notification; never raises."""
        contact = PatientContact(
            name=patient["name"],
            phone=patient.get("phone"),
            doctor_display_name=doctor_display_name(doctor),
        )

        try:
            result = await self.notifier.notify(kind, row, contact)
        except Exception as e:
            logger.warning(
                "appointment_notification_failed",
                kind=kind.value,
                appointment_id=str(row["id"]),
                error=str(e),
            )
            return NotificationOutcome(attempted=True, sent=False, error=str(e))

        return NotificationOutcome(attempted=True, sent=result.sent, error=result.error)

    async def _mark_confirmation_sent(self, row: dict[str, Any]) -> dict[str, Any]:
        """Record a delivered confirmation; failure leaves the flag unset."""
        try:
            updated = await self.store.update(row["id"], {"confirmation_sent": True})
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                "confirmation_flag_update_failed",
                appointment_id=str(row["id"]),
                error=str(e),
            )
            return row

        return updated or row
