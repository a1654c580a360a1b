"""Tests for doctor ownership rules."""

from uuid import uuid4

import pytest

from app.core.exceptions import ForbiddenException
from app.schemas.principal import Principal, Role
from app.services.authorization import (
    Decision,
    authorize,
    ensure_authorized,
    scope_doctor_filter,
)

DOCTOR_X = uuid4()
DOCTOR_Y = uuid4()


def principal(*roles: Role, bound=None) -> Principal:
    return Principal(user_id=uuid4(), roles=frozenset(roles), bound_doctor_id=bound)


@pytest.mark.parametrize(
    ("caller", "target", "expected"),
    [
        (principal(Role.ADMIN), DOCTOR_X, Decision.ALLOW),
        (principal(Role.SECRETARY), DOCTOR_Y, Decision.ALLOW),
        (principal(Role.DOCTOR, bound=DOCTOR_X), DOCTOR_X, Decision.ALLOW),
        (principal(Role.DOCTOR, bound=DOCTOR_X), DOCTOR_Y, Decision.DENY),
        # Role without a bound record grants nothing
        (principal(Role.DOCTOR), DOCTOR_X, Decision.DENY),
        # Bound record without the role grants nothing
        (principal(bound=DOCTOR_X), DOCTOR_X, Decision.DENY),
        (principal(), DOCTOR_X, Decision.DENY),
        # Staff role wins over a foreign binding
        (principal(Role.DOCTOR, Role.ADMIN, bound=DOCTOR_X), DOCTOR_Y, Decision.ALLOW),
    ],
)
def test_authorize_truth_table(caller, target, expected):
    """Each role/binding combination gets the expected decision."""
    assert authorize(caller, target) is expected


def test_ensure_authorized_raises_generic_forbidden():
    """Denials do not leak whether the doctor exists."""
    with pytest.raises(ForbiddenException) as exc_info:
        ensure_authorized(principal(Role.DOCTOR, bound=DOCTOR_X), DOCTOR_Y)

    assert exc_info.value.status_code == 403
    assert str(DOCTOR_Y) not in exc_info.value.message


def test_scope_doctor_filter_staff_keeps_request():
    """Staff may list every doctor or a chosen one."""
    staff = principal(Role.SECRETARY)

    assert scope_doctor_filter(staff, None) is None
    assert scope_doctor_filter(staff, DOCTOR_Y) == DOCTOR_Y


def test_scope_doctor_filter_pins_doctor_to_own_record():
    """A doctor always reads their own agenda."""
    doctor = principal(Role.DOCTOR, bound=DOCTOR_X)

    assert scope_doctor_filter(doctor, None) == DOCTOR_X
    assert scope_doctor_filter(doctor, DOCTOR_X) == DOCTOR_X

    with pytest.raises(ForbiddenException):
        scope_doctor_filter(doctor, DOCTOR_Y)


def test_scope_doctor_filter_rejects_roleless_caller():
    """No role means no agenda at all."""
    with pytest.raises(ForbiddenException):
        scope_doctor_filter(principal(), None)
