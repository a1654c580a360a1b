"""Authenticated caller representation."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Roles a clinic user can hold."""

    ADMIN = "admin"
    SECRETARY = "secretary"
    DOCTOR = "doctor"


class Principal(BaseModel):
    """Caller identity resolved from the access token."""

    user_id: UUID
    roles: frozenset[Role] = Field(default_factory=frozenset)
    bound_doctor_id: UUID | None = None

    model_config = {"frozen": True}

    def has_role(self, role: Role) -> bool:
        """Check role membership."""
        return role in self.roles

    @property
    def is_staff(self) -> bool:
        """Admins and secretaries act on every doctor's agenda."""
        return Role.ADMIN in self.roles or Role.SECRETARY in self.roles
