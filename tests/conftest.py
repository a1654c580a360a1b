import os
from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

os.environ.setdefault("DATABASE_URL", "sqlite:///./scheduling_test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "console"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import insert  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from app.core.security import create_access_token  # noqa: E402
from app.database import get_db  # noqa: E402
from app.dependencies import get_clock, get_identity_service, get_notifier  # noqa: E402
from app.main import app  # noqa: E402
from app.models import doctor_schedules, doctors, metadata, patients, user_roles  # noqa: E402
from app.schemas.principal import Principal, Role  # noqa: E402
from app.services.identity_service import IdentityService  # noqa: E402
from app.services.notification_port import (  # noqa: E402
    NotificationKind,
    NotificationResult,
    PatientContact,
)

# A Monday, far enough ahead to never be "in the past"
SLOT_DATE = date(2030, 3, 4)
SLOT_TIME = time(9, 0)
NOW = datetime(2030, 3, 1, 12, 0, tzinfo=UTC)


class FixedClock:
    """Clock frozen at a given instant, advanced manually."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def set(self, instant: datetime) -> None:
        self.instant = instant


class FakeNotifier:
    """Records every notification and reports success."""

    def __init__(self) -> None:
        self.calls: list[tuple[NotificationKind, dict[str, Any], PatientContact]] = []

    async def notify(
        self,
        kind: NotificationKind,
        appointment: dict[str, Any],
        contact: PatientContact,
    ) -> NotificationResult:
        self.calls.append((kind, appointment, contact))
        return NotificationResult(sent=True, provider_message_id=f"SM{len(self.calls)}")


class FailingNotifier:
    """Notifier whose transport always blows up."""

    def __init__(self) -> None:
        self.attempts = 0

    async def notify(
        self,
        kind: NotificationKind,
        appointment: dict[str, Any],
        contact: PatientContact,
    ) -> NotificationResult:
        self.attempts += 1
        raise ConnectionError("twilio unreachable")


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database so concurrent sessions share real locks."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest_asyncio.fixture
async def clinic(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, UUID]:
    """
    Two doctors, one patient each, and a user for every role.

    Doctor A works Monday 08:00-12:00 and 14:00-17:00.
    """
    ids = {
        "doctor_a": uuid4(),
        "doctor_b": uuid4(),
        "patient_a": uuid4(),
        "patient_a2": uuid4(),
        "patient_b": uuid4(),
        "admin_user": uuid4(),
        "admin2_user": uuid4(),
        "secretary_user": uuid4(),
        "doctor_a_user": uuid4(),
        "doctor_b_user": uuid4(),
        "nobody_user": uuid4(),
    }

    async with session_factory() as session:
        await session.execute(
            insert(doctors),
            [
                {"id": ids["doctor_a"], "user_id": ids["doctor_a_user"], "name": "Ana Lopez", "prefix": "Dra."},
                {"id": ids["doctor_b"], "user_id": ids["doctor_b_user"], "name": "Bruno Diaz", "prefix": None},
            ],
        )
        await session.execute(
            insert(patients),
            [
                {"id": ids["patient_a"], "doctor_id": ids["doctor_a"], "name": "Carla Reyes", "phone": "9988-7766"},
                {"id": ids["patient_a2"], "doctor_id": ids["doctor_a"], "name": "Mario Paz", "phone": None},
                {"id": ids["patient_b"], "doctor_id": ids["doctor_b"], "name": "Luis Mejia", "phone": "+50433334444"},
            ],
        )
        await session.execute(
            insert(user_roles),
            [
                {"user_id": ids["admin_user"], "role": Role.ADMIN.value},
                {"user_id": ids["admin2_user"], "role": Role.ADMIN.value},
                {"user_id": ids["secretary_user"], "role": Role.SECRETARY.value},
                {"user_id": ids["doctor_a_user"], "role": Role.DOCTOR.value},
                {"user_id": ids["doctor_b_user"], "role": Role.DOCTOR.value},
            ],
        )
        await session.execute(
            insert(doctor_schedules),
            [
                {"doctor_id": ids["doctor_a"], "day_of_week": 1, "start_time": time(8, 0), "end_time": time(12, 0)},
                {"doctor_id": ids["doctor_a"], "day_of_week": 1, "start_time": time(14, 0), "end_time": time(17, 0)},
            ],
        )
        await session.commit()

    return ids


@pytest.fixture
def admin(clinic) -> Principal:
    return Principal(user_id=clinic["admin_user"], roles=frozenset({Role.ADMIN}))


@pytest.fixture
def second_admin(clinic) -> Principal:
    return Principal(user_id=clinic["admin2_user"], roles=frozenset({Role.ADMIN}))


@pytest.fixture
def secretary(clinic) -> Principal:
    return Principal(user_id=clinic["secretary_user"], roles=frozenset({Role.SECRETARY}))


@pytest.fixture
def doctor_a(clinic) -> Principal:
    return Principal(
        user_id=clinic["doctor_a_user"],
        roles=frozenset({Role.DOCTOR}),
        bound_doctor_id=clinic["doctor_a"],
    )


@pytest.fixture
def doctor_b(clinic) -> Principal:
    return Principal(
        user_id=clinic["doctor_b_user"],
        roles=frozenset({Role.DOCTOR}),
        bound_doctor_id=clinic["doctor_b"],
    )


@pytest.fixture
def appointment_payload(clinic) -> dict:
    """Sample appointment data for testing."""
    return {
        "doctor_id": str(clinic["doctor_a"]),
        "patient_id": str(clinic["patient_a"]),
        "date": SLOT_DATE.isoformat(),
        "time": "09:00",
        "duration_minutes": 30,
        "notes": "First visit",
    }


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: FakeNotifier,
    clock: FixedClock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_service] = lambda: IdentityService()
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_clock] = lambda: clock

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def bearer(user_id: UUID) -> dict[str, str]:
    """Authorization header for a user."""
    token = create_access_token(data={"sub": str(user_id)}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(clinic) -> dict[str, dict[str, str]]:
    """Authorization headers keyed by role name."""
    return {
        "admin": bearer(clinic["admin_user"]),
        "secretary": bearer(clinic["secretary_user"]),
        "doctor_a": bearer(clinic["doctor_a_user"]),
        "doctor_b": bearer(clinic["doctor_b_user"]),
        "nobody": bearer(clinic["nobody_user"]),
    }
