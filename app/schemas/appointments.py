"""Appointment schemas for request/response validation."""

import datetime as dt
import re
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
MAX_NOTES_LENGTH = 2000

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"

    @classmethod
    def from_legacy(cls, value: str) -> "AppointmentStatus":
        """Translate the Spanish status vocabulary to the canonical one."""
        return cls(LEGACY_STATUS_MAP.get(value, value))


LEGACY_STATUS_MAP = {
    "agendada": AppointmentStatus.SCHEDULED.value,
    "confirmada": AppointmentStatus.CONFIRMED.value,
    "cancelada": AppointmentStatus.CANCELLED.value,
    "canceled": AppointmentStatus.CANCELLED.value,
    "completada": AppointmentStatus.COMPLETED.value,
    "no_asistio": AppointmentStatus.NO_SHOW.value,
}


def _check_date_format(value: Any) -> Any:
    if isinstance(value, str) and not DATE_PATTERN.match(value):
        raise ValueError("Date must be in YYYY-MM-DD format")
    return value


def _check_time_format(value: Any) -> Any:
    if isinstance(value, str) and not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM or HH:MM:SS format")
    return value


def _normalize_time(value: dt.time) -> dt.time:
    if value.tzinfo is not None:
        raise ValueError("Time must be clinic-local without an offset")
    return value.replace(microsecond=0)


class SlotFields(BaseModel):
    """Date, time and duration shared by create and reschedule."""

    date: dt.date
    time: dt.time
    duration_minutes: int | None = Field(
        None, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES
    )
    notes: str | None = Field(None, max_length=MAX_NOTES_LENGTH)

    @field_validator("date", mode="before")
    @classmethod
    def validate_date_format(cls, v: Any) -> Any:
        """Require YYYY-MM-DD for string input."""
        return _check_date_format(v)

    @field_validator("time", mode="before")
    @classmethod
    def validate_time_format(cls, v: Any) -> Any:
        """Require HH:MM or HH:MM:SS for string input."""
        return _check_time_format(v)

    @field_validator("time")
    @classmethod
    def normalize_time(cls, v: dt.time) -> dt.time:
        """Clinic-local, second precision."""
        return _normalize_time(v)


class AppointmentCreate(SlotFields):
    """Schema for creating a new appointment."""

    doctor_id: UUID
    patient_id: UUID


class AppointmentReschedule(SlotFields):
    """Schema for moving an appointment to a new slot.

    ``notes`` is only written when supplied; an explicit null clears it.
    """


class AppointmentNotesUpdate(BaseModel):
    """Schema for replacing appointment notes."""

    notes: str | None = Field(..., max_length=MAX_NOTES_LENGTH)


class AppointmentStatusUpdate(BaseModel):
    """Schema for closing out an appointment."""

    status: AppointmentStatus

    @field_validator("status", mode="before")
    @classmethod
    def translate_legacy(cls, v: Any) -> Any:
        """Accept the Spanish vocabulary."""
        if isinstance(v, str):
            return AppointmentStatus.from_legacy(v)
        return v


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    doctor_id: UUID
    patient_id: UUID
    date: dt.date
    time: dt.time
    appointment_at: dt.datetime
    duration_minutes: int
    status: AppointmentStatus
    notes: str | None = None
    confirmation_sent: bool
    reminder_24h_sent: bool
    reminder_24h_sent_at: dt.datetime | None = None
    reschedule_notified_at: dt.datetime | None = None
    created_at: dt.datetime
    updated_at: dt.datetime
    cancelled_at: dt.datetime | None = None

    model_config = {"from_attributes": True}


class NotificationOutcome(BaseModel):
    """What happened when the patient notification was attempted."""

    attempted: bool = False
    sent: bool = False
    error: str | None = None


class AppointmentMutationResponse(BaseModel):
    """Appointment after a lifecycle transition, with notification outcome."""

    appointment: AppointmentResponse
    notification: NotificationOutcome = Field(default_factory=NotificationOutcome)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    from_date: dt.date | None = None
    to_date: dt.date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class AvailableSlotsResponse(BaseModel):
    """Free start times for a doctor on one day."""

    doctor_id: UUID
    date: dt.date
    duration_minutes: int
    slots: list[str]


class AvailableDaysResponse(BaseModel):
    """Dates in a range on which a doctor still has a free slot."""

    doctor_id: UUID
    from_date: dt.date
    to_date: dt.date
    duration_minutes: int
    days: list[dt.date]
