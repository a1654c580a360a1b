"""Database models."""

from app.models.appointments import appointments
from app.models.base import metadata
from app.models.doctors import doctor_schedules, doctors
from app.models.patients import patients
from app.models.user_roles import user_roles

__all__ = [
    "appointments",
    "doctor_schedules",
    "doctors",
    "metadata",
    "patients",
    "user_roles",
]
