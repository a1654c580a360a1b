"""Tests for free-slot computation."""

from datetime import date, time, timedelta
from uuid import uuid4

import pytest

from app.core.exceptions import ForbiddenException, NotFoundException, ValidationException
from app.schemas.appointments import AppointmentCreate
from app.services.appointment_service import AppointmentService
from app.services.availability_service import (
    MAX_RANGE_DAYS,
    AvailabilityService,
    compute_free_slots,
    day_of_week,
)
from tests.conftest import SLOT_DATE


def test_day_of_week_starts_on_sunday():
    assert day_of_week(date(2030, 3, 3)) == 0
    assert day_of_week(SLOT_DATE) == 1
    assert day_of_week(date(2030, 3, 9)) == 6


def test_compute_free_slots_empty_day():
    slots = compute_free_slots([(time(8, 0), time(10, 0))], [], 60, 30)

    assert slots == ["08:00", "08:30", "09:00"]


def test_compute_free_slots_respects_busy_durations():
    """A 90 minute appointment blocks every overlapping candidate."""
    slots = compute_free_slots(
        blocks=[(time(8, 0), time(12, 0))],
        busy=[(time(9, 0), 90)],
        duration_minutes=30,
        granularity_minutes=30,
    )

    assert slots == ["08:00", "08:30", "10:30", "11:00", "11:30"]


def test_compute_free_slots_merges_blocks_sorted():
    slots = compute_free_slots(
        blocks=[(time(14, 0), time(15, 0)), (time(8, 0), time(9, 0))],
        busy=[],
        duration_minutes=60,
        granularity_minutes=30,
    )

    assert slots == ["08:00", "14:00"]


@pytest.mark.asyncio
async def test_available_slots_skip_booked_times(db_session, admin, clinic, clock):
    appointments = AppointmentService(db_session, clock=clock)
    await appointments.create_appointment(
        admin,
        AppointmentCreate(
            doctor_id=clinic["doctor_a"],
            patient_id=clinic["patient_a"],
            date=SLOT_DATE,
            time=time(14, 0),
            duration_minutes=60,
        ),
    )

    result = await AvailabilityService(db_session).available_slots(
        admin, clinic["doctor_a"], SLOT_DATE, duration_minutes=60
    )

    assert result.duration_minutes == 60
    assert result.slots == [
        "08:00", "08:30", "09:00", "09:30", "10:00", "10:30", "11:00",
        "15:00", "15:30", "16:00",
    ]


@pytest.mark.asyncio
async def test_cancelled_appointments_do_not_block(db_session, admin, clinic, clock):
    appointments = AppointmentService(db_session, clock=clock)
    created = await appointments.create_appointment(
        admin,
        AppointmentCreate(
            doctor_id=clinic["doctor_a"],
            patient_id=clinic["patient_a"],
            date=SLOT_DATE,
            time=time(8, 0),
        ),
    )
    await appointments.cancel_appointment(admin, created.appointment.id)

    result = await AvailabilityService(db_session).available_slots(admin, clinic["doctor_a"], SLOT_DATE)

    assert result.slots[0] == "08:00"


@pytest.mark.asyncio
async def test_day_without_schedule(db_session, admin, clinic):
    result = await AvailabilityService(db_session).available_slots(
        admin, clinic["doctor_a"], SLOT_DATE + timedelta(days=1)
    )

    assert result.slots == []


@pytest.mark.asyncio
async def test_availability_ownership(db_session, doctor_b, admin, clinic):
    with pytest.raises(ForbiddenException):
        await AvailabilityService(db_session).available_slots(doctor_b, clinic["doctor_a"], SLOT_DATE)

    with pytest.raises(NotFoundException):
        await AvailabilityService(db_session).available_slots(admin, uuid4(), SLOT_DATE)


@pytest.mark.asyncio
async def test_available_days_skips_full_and_off_days(db_session, admin, clinic, clock):
    """Only working days with room for the requested length are listed."""
    next_monday = SLOT_DATE + timedelta(days=7)
    appointments = AppointmentService(db_session, clock=clock)
    # Fills the whole morning block; the afternoon block is too short for 4 hours
    await appointments.create_appointment(
        admin,
        AppointmentCreate(
            doctor_id=clinic["doctor_a"],
            patient_id=clinic["patient_a"],
            date=SLOT_DATE,
            time=time(8, 0),
            duration_minutes=240,
        ),
    )

    service = AvailabilityService(db_session)
    long_visits = await service.available_days(
        admin, clinic["doctor_a"], SLOT_DATE, next_monday, duration_minutes=240
    )
    short_visits = await service.available_days(
        admin, clinic["doctor_a"], SLOT_DATE, next_monday, duration_minutes=30
    )

    assert long_visits.days == [next_monday]
    assert short_visits.days == [SLOT_DATE, next_monday]
    assert short_visits.duration_minutes == 30


@pytest.mark.asyncio
async def test_available_days_rejects_bad_ranges(db_session, admin, doctor_b, clinic):
    service = AvailabilityService(db_session)

    with pytest.raises(ValidationException):
        await service.available_days(admin, clinic["doctor_a"], SLOT_DATE, SLOT_DATE - timedelta(days=1))

    with pytest.raises(ValidationException):
        await service.available_days(
            admin, clinic["doctor_a"], SLOT_DATE, SLOT_DATE + timedelta(days=MAX_RANGE_DAYS)
        )

    with pytest.raises(ForbiddenException):
        await service.available_days(doctor_b, clinic["doctor_a"], SLOT_DATE, SLOT_DATE)
