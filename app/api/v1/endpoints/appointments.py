"""Appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import AppClock, CurrentPrincipal, DatabaseSession, Notifier
from app.schemas.appointments import (
    MAX_DURATION_MINUTES,
    MIN_DURATION_MINUTES,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentMutationResponse,
    AppointmentNotesUpdate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusUpdate,
    AvailableDaysResponse,
    AvailableSlotsResponse,
)
from app.services.appointment_service import AppointmentService
from app.services.availability_service import AvailabilityService

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentMutationResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Create new appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    principal: CurrentPrincipal,
    db: DatabaseSession,
    notifier: Notifier,
    clock: AppClock,
) -> AppointmentMutationResponse:
    """
    Book an appointment in a free slot.

    Returns 409 when the slot is already taken by an active appointment.

    Args:
        data: Appointment creation data
        principal: Authenticated caller
        db: Database session
        notifier: Patient notifier
        clock: Timestamp source

    Returns:
        Created appointment and confirmation outcome
    """
    service = AppointmentService(db, notifier=notifier, clock=clock)
    return await service.create_appointment(principal, data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    principal: CurrentPrincipal,
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments visible to the caller.

    Doctors are restricted to their own agenda regardless of ``doctor_id``.
    """
    filters = AppointmentFilters(
        status=status_filter,
        doctor_id=doctor_id,
        patient_id=patient_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )

    service = AppointmentService(db)
    return await service.list_appointments(principal, filters)


@router.get(
    "/availability",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Free start times for a doctor",
)
async def get_availability(
    principal: CurrentPrincipal,
    db: DatabaseSession,
    doctor_id: UUID = Query(...),
    day: date = Query(..., alias="date"),
    duration_minutes: int | None = Query(None, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES),
) -> AvailableSlotsResponse:
    """List free start times for a doctor on one day."""
    service = AvailabilityService(db)
    return await service.available_slots(principal, doctor_id, day, duration_minutes)


@router.get(
    "/availability/days",
    response_model=AvailableDaysResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Dates with free slots for a doctor",
)
async def get_available_days(
    principal: CurrentPrincipal,
    db: DatabaseSession,
    doctor_id: UUID = Query(...),
    from_date: date = Query(...),
    to_date: date = Query(...),
    duration_minutes: int | None = Query(None, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES),
) -> AvailableDaysResponse:
    """List the dates between ``from_date`` and ``to_date`` that still have a free slot."""
    service = AvailabilityService(db)
    return await service.available_days(principal, doctor_id, from_date, to_date, duration_minutes)


@router.get(
    "/range",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Appointments between two dates",
)
async def list_appointments_in_range(
    principal: CurrentPrincipal,
    db: DatabaseSession,
    from_date: date = Query(...),
    to_date: date = Query(...),
) -> list[AppointmentResponse]:
    """Every appointment the caller may see between two dates inclusive."""
    service = AppointmentService(db)
    return await service.list_by_date_range(principal, from_date, to_date)


@router.get(
    "/doctor/{doctor_id}",
    response_model=list[AppointmentResponse],
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="A doctor's agenda",
)
async def list_doctor_appointments(
    doctor_id: UUID,
    principal: CurrentPrincipal,
    db: DatabaseSession,
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
) -> list[AppointmentResponse]:
    """A doctor's appointments, optionally bounded by date."""
    service = AppointmentService(db)
    return await service.list_by_doctor(principal, doctor_id, from_date, to_date)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    principal: CurrentPrincipal,
    db: DatabaseSession,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Args:
        appointment_id: Appointment ID
        principal: Authenticated caller
        db: Database session

    Returns:
        Appointment details
    """
    service = AppointmentService(db)
    return await service.get_appointment(principal, appointment_id)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentMutationResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Move appointment to a new slot",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    principal: CurrentPrincipal,
    db: DatabaseSession,
    notifier: Notifier,
    clock: AppClock,
) -> AppointmentMutationResponse:
    """
    Move an appointment to a new date and time for the same doctor.

    Confirmation and reminder flags are reset and the patient is told about
    the new slot.
    """
    service = AppointmentService(db, notifier=notifier, clock=clock)
    return await service.reschedule_appointment(principal, appointment_id, data)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentMutationResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    principal: CurrentPrincipal,
    db: DatabaseSession,
    clock: AppClock,
) -> AppointmentMutationResponse:
    """Cancel an appointment and free its slot."""
    service = AppointmentService(db, clock=clock)
    return await service.cancel_appointment(principal, appointment_id)


@router.patch(
    "/{appointment_id}/notes",
    response_model=AppointmentMutationResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Replace appointment notes",
)
async def update_appointment_notes(
    appointment_id: UUID,
    data: AppointmentNotesUpdate,
    principal: CurrentPrincipal,
    db: DatabaseSession,
    clock: AppClock,
) -> AppointmentMutationResponse:
    """Replace the notes on an appointment."""
    service = AppointmentService(db, clock=clock)
    return await service.update_notes(principal, appointment_id, data)


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentMutationResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Mark appointment completed or no-show",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    principal: CurrentPrincipal,
    db: DatabaseSession,
    clock: AppClock,
) -> AppointmentMutationResponse:
    """
    Close out an appointment.

    Args:
        appointment_id: Appointment ID
        data: Target status (completed or no_show)
        principal: Authenticated caller
        db: Database session
        clock: Timestamp source

    Returns:
        Updated appointment
    """
    service = AppointmentService(db, clock=clock)
    return await service.update_status(principal, appointment_id, data)
