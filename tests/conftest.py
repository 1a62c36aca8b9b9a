"""
Shared test fixtures.

Uses a throw-away SQLite file per test (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  A file rather than ``:memory:`` because the
sweep and the notification dispatcher open sessions of their own.
Row locks (``FOR UPDATE``) are silently dropped by the SQLite dialect.
"""

from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from discipline.domain.clock import FixedClock
from discipline.domain.enums import AccountStatus, BookingStatus, UserRole
from discipline.infrastructure import models  # noqa: F401  (registers tables)
from discipline.infrastructure.database import Base
from discipline.infrastructure.models import (
    CarBookingModel,
    CarModel,
    DisputeModel,
    DriverModel,
    UserModel,
)
from discipline.services.notifications import NotificationDispatcher

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ── Doubles ───────────────────────────────────────────────────────────


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.sent = []

    async def notify(self, user_id, type, title, body, metadata=None):
        self.sent.append((user_id, type, title, body, metadata or {}))

    def types_for(self, user_id):
        return [t for uid, t, *_ in self.sent if uid == user_id]


class FailingDispatcher(NotificationDispatcher):
    async def notify(self, user_id, type, title, body, metadata=None):
        raise ConnectionError("notification backend down")


# ── Data builder ──────────────────────────────────────────────────────


class Fleet:
    """Creates accounts, drivers, cars, bookings and disputes."""

    def __init__(self, session: AsyncSession, clock: FixedClock):
        self.session = session
        self.clock = clock
        self.cars: dict[int, CarModel] = {}
        self._seq = 0

    def _email(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}{self._seq}@example.com"

    async def user(self, role=UserRole.CUSTOMER, status=AccountStatus.ACTIVE):
        user = UserModel(
            name=f"{role.value} {self._seq}",
            email=self._email(role.value),
            role=role,
            status=status,
            created_at=self.clock.now(),
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def driver(self, status=AccountStatus.ACTIVE) -> DriverModel:
        account = await self.user(UserRole.DRIVER, status)
        driver = DriverModel(
            user_id=account.id, is_verified=True, created_at=self.clock.now()
        )
        self.session.add(driver)
        await self.session.flush()
        car = CarModel(
            driver_id=driver.id, model="Sedan", is_active=True, created_at=self.clock.now()
        )
        self.session.add(car)
        await self.session.flush()
        self.cars[driver.id] = car
        return driver

    async def booking(
        self, driver: DriverModel, status=BookingStatus.COMPLETED
    ) -> CarBookingModel:
        customer = await self.user()
        booking = CarBookingModel(
            car_id=self.cars[driver.id].id,
            user_id=customer.id,
            status=status,
            created_at=self.clock.now(),
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def dispute(self, driver: DriverModel) -> DisputeModel:
        booking = await self.booking(driver)
        dispute = DisputeModel(
            booking_car_id=booking.id,
            description="Driver was late",
            created_at=self.clock.now(),
        )
        self.session.add(dispute)
        await self.session.flush()
        return dispute

    async def account_of(self, driver: DriverModel) -> UserModel:
        return await self.session.get(UserModel, driver.user_id)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0)


@pytest.fixture
def fleet(db_session, clock) -> Fleet:
    return Fleet(db_session, clock)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher() -> FailingDispatcher:
    return FailingDispatcher()
