"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clinic_booking.api.deps import get_notifier, get_presence
from clinic_booking.db.base import Base
from clinic_booking.db.session import get_db
from clinic_booking.main import app
from clinic_booking.models.scheduling import AvailabilitySlot, ProviderKind
from clinic_booking.services.appointments import AppointmentService
from clinic_booking.services.booking import BookingTransactor
from clinic_booking.services.ledger import BalanceLedger
from clinic_booking.services.notifications import RecordingNotificationSink
from clinic_booking.services.rbac import Principal, Role
from clinic_booking.services.slots import SlotStore
from clinic_booking.services.telemedicine import PresenceRegistry
from tests.factories import CLINIC_ID, DOCTOR_ID, PATIENT_A, PATIENT_B

# Use SQLite for testing (simpler than spinning up postgres)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifications() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def presence() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture
def slot_store(async_session: AsyncSession) -> SlotStore:
    return SlotStore(async_session)


@pytest.fixture
def ledger(async_session: AsyncSession) -> BalanceLedger:
    return BalanceLedger(async_session)


@pytest.fixture
def transactor(
    async_session: AsyncSession, notifications: RecordingNotificationSink
) -> BookingTransactor:
    return BookingTransactor(async_session, notifier=notifications)


@pytest.fixture
def appointments(
    async_session: AsyncSession,
    notifications: RecordingNotificationSink,
    presence: PresenceRegistry,
) -> AppointmentService:
    return AppointmentService(async_session, notifier=notifications, presence=presence)


@pytest.fixture
def make_slot(
    slot_store: SlotStore,
) -> Callable[..., Awaitable[AvailabilitySlot]]:
    """Factory publishing a slot for the default doctor."""

    async def _make_slot(
        start: datetime,
        end: datetime,
        clinic_id: int | None = CLINIC_ID,
        provider_id: int = DOCTOR_ID,
        provider_kind: ProviderKind = ProviderKind.DOCTOR,
        is_available: bool = True,
    ) -> AvailabilitySlot:
        return await slot_store.create(
            provider_id=provider_id,
            provider_kind=provider_kind,
            start_time=start,
            end_time=end,
            clinic_id=clinic_id,
            is_available=is_available,
        )

    return _make_slot


@pytest.fixture
def fund(ledger: BalanceLedger) -> Callable[[int, str], Awaitable[Decimal]]:
    async def _fund(patient_id: int, amount: str) -> Decimal:
        return await ledger.deposit(patient_id, amount)

    return _fund


@pytest.fixture
def doctor() -> Principal:
    return Principal(id=DOCTOR_ID, role=Role.DOCTOR)


@pytest.fixture
def patient_a() -> Principal:
    return Principal(id=PATIENT_A, role=Role.PATIENT)


@pytest.fixture
def patient_b() -> Principal:
    return Principal(id=PATIENT_B, role=Role.PATIENT)


@pytest.fixture
def clinic_admin() -> Principal:
    return Principal(id=900, role=Role.CLINIC_ADMIN)


@pytest.fixture
async def client(
    async_session: AsyncSession,
    notifications: RecordingNotificationSink,
    presence: PresenceRegistry,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create an HTTP client for the app with overridden dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    async def override_get_notifier() -> RecordingNotificationSink:
        return notifications

    async def override_get_presence() -> PresenceRegistry:
        return presence

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = override_get_notifier
    app.dependency_overrides[get_presence] = override_get_presence

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()

