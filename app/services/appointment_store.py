"""Persistence for appointments and the records they reference."""

from collections.abc import Iterable
from datetime import date, time
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointments import appointments
from app.models.doctors import doctor_schedules, doctors
from app.models.patients import patients
from app.schemas.appointments import AppointmentFilters, AppointmentStatus


class AppointmentStore:
    """SQLAlchemy Core access to the appointments table.

    Methods never commit; the caller owns the transaction. Writes are guarded
    by the partial unique index on active slots, so an insert or update that
    would double-book a doctor raises ``IntegrityError`` from the driver.
    """

    def __init__(self, db: AsyncSession):
        """Initialize store with database session."""
        self.db = db

    async def get(self, appointment_id: UUID) -> dict[str, Any] | None:
        """Fetch one appointment row."""
        result = await self.db.execute(
            select(appointments).where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def get_doctor(self, doctor_id: UUID) -> dict[str, Any] | None:
        """Fetch one doctor row."""
        result = await self.db.execute(select(doctors).where(doctors.c.id == doctor_id))
        row = result.mappings().first()
        return dict(row) if row else None

    async def get_patient_for_doctor(
        self,
        patient_id: UUID,
        doctor_id: UUID,
    ) -> dict[str, Any] | None:
        """Fetch a patient only if it is owned by the given doctor."""
        result = await self.db.execute(
            select(patients).where(
                and_(
                    patients.c.id == patient_id,
                    patients.c.doctor_id == doctor_id,
                )
            )
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def find_active_in_slot(
        self,
        doctor_id: UUID,
        slot_date: date,
        slot_time: time,
        exclude_id: UUID | None = None,
    ) -> UUID | None:
        """Return the id of an active appointment holding the slot, if any."""
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.date == slot_date,
            appointments.c.time == slot_time,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        result = await self.db.execute(
            select(appointments.c.id).where(and_(*conditions)).limit(1)
        )
        return result.scalar_one_or_none()

    async def insert(self, values: dict[str, Any]) -> dict[str, Any]:
        """Insert an appointment and return the stored row."""
        result = await self.db.execute(insert(appointments).values(**values).returning(appointments))
        return dict(result.mappings().one())

    async def update(
        self,
        appointment_id: UUID,
        values: dict[str, Any],
        expected_statuses: Iterable[AppointmentStatus] | None = None,
    ) -> dict[str, Any] | None:
        """
        Update one appointment and return the stored row.

        With ``expected_statuses`` the row is only touched while its stored
        status is one of them, so a concurrent status change makes the update
        match nothing and return ``None``.
        """
        conditions = [appointments.c.id == appointment_id]
        if expected_statuses is not None:
            conditions.append(
                appointments.c.status.in_([status.value for status in expected_statuses])
            )

        result = await self.db.execute(
            update(appointments)
            .where(and_(*conditions))
            .values(**values)
            .returning(appointments)
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def search(
        self,
        filters: AppointmentFilters,
    ) -> tuple[int, list[dict[str, Any]]]:
        """
        List appointments with filtering and pagination.

        Returns:
            Tuple of (total matching rows, page of rows)
        """
        conditions = []

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.from_date:
            conditions.append(appointments.c.date >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.date <= filters.to_date)

        where = and_(*conditions) if conditions else None

        count_stmt = select(func.count()).select_from(appointments)
        if where is not None:
            count_stmt = count_stmt.where(where)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = select(appointments)
        if where is not None:
            stmt = stmt.where(where)
        stmt = (
            stmt.order_by(appointments.c.date, appointments.c.time)
            .limit(filters.page_size)
            .offset(offset)
        )

        result = await self.db.execute(stmt)
        return total, [dict(row) for row in result.mappings().all()]

    async def list_by_doctor(
        self,
        doctor_id: UUID,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[dict[str, Any]]:
        """All of a doctor's appointments, optionally bounded by date."""
        conditions = [appointments.c.doctor_id == doctor_id]
        if from_date:
            conditions.append(appointments.c.date >= from_date)
        if to_date:
            conditions.append(appointments.c.date <= to_date)

        result = await self.db.execute(
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.date, appointments.c.time)
        )
        return [dict(row) for row in result.mappings().all()]

    async def list_by_date_range(
        self,
        from_date: date,
        to_date: date,
        doctor_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        """Appointments of every doctor (or one) between two dates inclusive."""
        conditions = [
            appointments.c.date >= from_date,
            appointments.c.date <= to_date,
        ]
        if doctor_id:
            conditions.append(appointments.c.doctor_id == doctor_id)

        result = await self.db.execute(
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.date, appointments.c.time)
        )
        return [dict(row) for row in result.mappings().all()]

    async def active_for_day(self, doctor_id: UUID, day: date) -> list[dict[str, Any]]:
        """Slot-holding appointments of a doctor on one day."""
        result = await self.db.execute(
            select(appointments.c.time, appointments.c.duration_minutes).where(
                and_(
                    appointments.c.doctor_id == doctor_id,
                    appointments.c.date == day,
                    appointments.c.status != AppointmentStatus.CANCELLED.value,
                )
            )
        )
        return [dict(row) for row in result.mappings().all()]

    async def schedules_for_weekday(self, doctor_id: UUID, day_of_week: int) -> list[dict[str, Any]]:
        """Working blocks of a doctor for a weekday (0 = Sunday)."""
        result = await self.db.execute(
            select(doctor_schedules.c.start_time, doctor_schedules.c.end_time)
            .where(
                and_(
                    doctor_schedules.c.doctor_id == doctor_id,
                    doctor_schedules.c.day_of_week == day_of_week,
                )
            )
            .order_by(doctor_schedules.c.start_time)
        )
        return [dict(row) for row in result.mappings().all()]

    async def active_between(
        self,
        doctor_id: UUID,
        from_date: date,
        to_date: date,
    ) -> list[dict[str, Any]]:
        """Slot-holding appointments of a doctor between two dates inclusive."""
        result = await self.db.execute(
            select(
                appointments.c.date,
                appointments.c.time,
                appointments.c.duration_minutes,
            ).where(
                and_(
                    appointments.c.doctor_id == doctor_id,
                    appointments.c.date >= from_date,
                    appointments.c.date <= to_date,
                    appointments.c.status != AppointmentStatus.CANCELLED.value,
                )
            )
        )
        return [dict(row) for row in result.mappings().all()]

    async def weekly_schedule(self, doctor_id: UUID) -> list[dict[str, Any]]:
        """Every working block of a doctor, for all weekdays."""
        result = await self.db.execute(
            select(
                doctor_schedules.c.day_of_week,
                doctor_schedules.c.start_time,
                doctor_schedules.c.end_time,
            )
            .where(doctor_schedules.c.doctor_id == doctor_id)
            .order_by(doctor_schedules.c.day_of_week, doctor_schedules.c.start_time)
        )
        return [dict(row) for row in result.mappings().all()]
