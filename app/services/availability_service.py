"""Free start times computed from doctor schedules."""

from collections import defaultdict
from datetime import date, time, timedelta
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import NotFoundException, ValidationException
from app.schemas.appointments import AvailableDaysResponse, AvailableSlotsResponse
from app.schemas.principal import Principal
from app.services.appointment_store import AppointmentStore
from app.services.authorization import ensure_authorized

logger = structlog.get_logger(__name__)

MAX_RANGE_DAYS = 62


def day_of_week(day: date) -> int:
    """Weekday with Sunday as 0, the way schedules are stored."""
    return (day.weekday() + 1) % 7


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _format_minutes(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


def compute_free_slots(
    blocks: list[tuple[time, time]],
    busy: list[tuple[time, int]],
    duration_minutes: int,
    granularity_minutes: int,
) -> list[str]:
    """
    Candidate start times that fit a block and overlap nothing busy.

    Args:
        blocks: Working (start, end) pairs
        busy: Active appointments as (start, duration in minutes)
        duration_minutes: Length of the appointment being placed
        granularity_minutes: Step between candidate starts

    Returns:
        Sorted unique ``HH:MM`` strings
    """
    taken = [(_minutes(start), _minutes(start) + length) for start, length in busy]
    free: set[int] = set()

    for block_start, block_end in blocks:
        start = _minutes(block_start)
        end = _minutes(block_end)
        candidate = start
        while candidate + duration_minutes <= end:
            candidate_end = candidate + duration_minutes
            if not any(candidate < busy_end and busy_start < candidate_end for busy_start, busy_end in taken):
                free.add(candidate)
            candidate += granularity_minutes

    return [_format_minutes(value) for value in sorted(free)]


class AvailabilityService:
    """Answers "when can this doctor see someone on this day"."""

    def __init__(self, db: AsyncSession, granularity_minutes: int | None = None):
        """Initialize service with database session."""
        self.store = AppointmentStore(db)
        self.granularity_minutes = granularity_minutes or settings.slot_granularity_minutes

    async def available_slots(
        self,
        principal: Principal,
        doctor_id: UUID,
        day: date,
        duration_minutes: int | None = None,
    ) -> AvailableSlotsResponse:
        """
        List free start times for a doctor on one day.

        The answer is advisory; a booking made from it can still lose the slot
        to a concurrent writer.

        Raises:
            ForbiddenException: Caller may not see this doctor's agenda
            NotFoundException: Doctor does not exist
        """
        ensure_authorized(principal, doctor_id)

        if not await self.store.get_doctor(doctor_id):
            raise NotFoundException("Doctor not found")

        duration = duration_minutes or settings.default_duration_minutes

        schedules = await self.store.schedules_for_weekday(doctor_id, day_of_week(day))
        if not schedules:
            return AvailableSlotsResponse(
                doctor_id=doctor_id, date=day, duration_minutes=duration, slots=[]
            )

        busy = await self.store.active_for_day(doctor_id, day)

        slots = compute_free_slots(
            blocks=[(row["start_time"], row["end_time"]) for row in schedules],
            busy=[(row["time"], row["duration_minutes"]) for row in busy],
            duration_minutes=duration,
            granularity_minutes=self.granularity_minutes,
        )

        logger.debug(
            "availability_computed",
            doctor_id=str(doctor_id),
            date=day.isoformat(),
            free=len(slots),
        )

        return AvailableSlotsResponse(
            doctor_id=doctor_id, date=day, duration_minutes=duration, slots=slots
        )

    async def available_days(
        self,
        principal: Principal,
        doctor_id: UUID,
        from_date: date,
        to_date: date,
        duration_minutes: int | None = None,
    ) -> AvailableDaysResponse:
        """
        List the dates in a range on which the doctor has at least one free slot.

        Args:
            principal: Caller
            doctor_id: Doctor whose calendar is read
            from_date: First date, inclusive
            to_date: Last date, inclusive
            duration_minutes: Length of the appointment being placed

        Raises:
            ForbiddenException: Caller may not see this doctor's agenda
            NotFoundException: Doctor does not exist
            ValidationException: Range reversed or longer than MAX_RANGE_DAYS
        """
        ensure_authorized(principal, doctor_id)

        if to_date < from_date:
            raise ValidationException.for_field("to_date", "to_date must not be before from_date")
        if (to_date - from_date).days + 1 > MAX_RANGE_DAYS:
            raise ValidationException.for_field(
                "to_date", f"Range cannot exceed {MAX_RANGE_DAYS} days"
            )

        if not await self.store.get_doctor(doctor_id):
            raise NotFoundException("Doctor not found")

        duration = duration_minutes or settings.default_duration_minutes

        blocks_by_weekday: dict[int, list[tuple[time, time]]] = defaultdict(list)
        for row in await self.store.weekly_schedule(doctor_id):
            blocks_by_weekday[row["day_of_week"]].append((row["start_time"], row["end_time"]))

        busy_by_date: dict[date, list[tuple[time, int]]] = defaultdict(list)
        for row in await self.store.active_between(doctor_id, from_date, to_date):
            busy_by_date[row["date"]].append((row["time"], row["duration_minutes"]))

        days = []
        day = from_date
        while day <= to_date:
            blocks = blocks_by_weekday.get(day_of_week(day))
            if blocks and compute_free_slots(
                blocks, busy_by_date.get(day, []), duration, self.granularity_minutes
            ):
                days.append(day)
            day += timedelta(days=1)

        logger.debug(
            "available_days_computed",
            doctor_id=str(doctor_id),
            from_date=from_date.isoformat(),
            to_date=to_date.isoformat(),
            free_days=len(days),
        )

        return AvailableDaysResponse(
            doctor_id=doctor_id,
            from_date=from_date,
            to_date=to_date,
            duration_minutes=duration,
            days=days,
        )
