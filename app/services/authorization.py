"""Ownership rules for acting on a doctor's agenda."""

from enum import Enum
from uuid import UUID

import structlog

from app.core.exceptions import ForbiddenException
from app.schemas.principal import Principal, Role

logger = structlog.get_logger(__name__)


class Decision(str, Enum):
    """Outcome of an authorization check."""

    ALLOW = "allow"
    DENY = "deny"


def authorize(principal: Principal, target_doctor_id: UUID) -> Decision:
    """
    Decide whether a principal may act on a doctor's appointments.

    Admins and secretaries may act on any doctor. A doctor may act only on
    the doctor record bound to their own identity.

    Args:
        principal: Resolved caller
        target_doctor_id: Doctor owning the appointment(s)

    Returns:
        ALLOW or DENY
    """
    if principal.is_staff:
        return Decision.ALLOW

    if (
        principal.has_role(Role.DOCTOR)
        and principal.bound_doctor_id is not None
        and principal.bound_doctor_id == target_doctor_id
    ):
        return Decision.ALLOW

    return Decision.DENY


def ensure_authorized(principal: Principal, target_doctor_id: UUID) -> None:
    """
    Raise unless the principal may act on the target doctor.

    Raises:
        ForbiddenException: With a message that does not reveal whether the
            target exists
    """
    if authorize(principal, target_doctor_id) is Decision.DENY:
        logger.warning(
            "authorization_denied",
            user_id=str(principal.user_id),
            roles=sorted(role.value for role in principal.roles),
            target_doctor_id=str(target_doctor_id),
        )
        raise ForbiddenException()


def scope_doctor_filter(principal: Principal, requested_doctor_id: UUID | None) -> UUID | None:
    """
    Resolve which doctor a read may be scoped to.

    Staff keep whatever they asked for (None means every doctor). A doctor is
    always pinned to their own record.

    Raises:
        ForbiddenException: If a doctor asks for another doctor's agenda or
            holds no usable role
    """
    if principal.is_staff:
        return requested_doctor_id

    if not principal.has_role(Role.DOCTOR) or principal.bound_doctor_id is None:
        raise ForbiddenException()

    if requested_doctor_id is not None:
        ensure_authorized(principal, requested_doctor_id)

    return principal.bound_doctor_id
