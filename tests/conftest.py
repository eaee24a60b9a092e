"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  Every test gets its own engine; ``StaticPool``
keeps the single in-memory connection alive for the whole test.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ridecore.config import settings
from ridecore.domain.entities import Location
from ridecore.domain.enums import (
    CouponStatus,
    DiscountType,
    DriverStatus,
    PaymentMethod,
    ServiceType,
)
from ridecore.domain.matching import location_cell
from ridecore.infrastructure.database import Base
from ridecore.infrastructure.models import CouponModel, DriverModel, PassengerModel
from ridecore.services.assignment import AssignmentCoordinator
from ridecore.services.rides import RideRequest, RideService

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

# 10:00 in Lima: outside both default peak windows.
RIDE_TIME = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
NOW = datetime(2026, 3, 10, 15, 0)

PICKUP = (-12.0464, -77.0428)  # Plaza de Armas
DROPOFF = (-12.1200, -77.0300)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh schema on a private in-memory database."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def ride_time() -> datetime:
    return RIDE_TIME


@pytest.fixture
def pickup() -> tuple[float, float]:
    return PICKUP


@pytest.fixture
def dropoff() -> tuple[float, float]:
    return DROPOFF


def _driver(name, service_type, status, lat, lng) -> DriverModel:
    return DriverModel(
        name=name,
        service_type=service_type,
        status=status,
        lat=lat,
        lng=lng,
        h3_cell=location_cell(lat, lng, settings.h3_resolution),
        location_updated_at=NOW,
    )


@pytest_asyncio.fixture
async def world(db_session: AsyncSession) -> SimpleNamespace:
    """
    Two passengers, five drivers around the pickup and three coupons.

    * ``near`` / ``second``: available economy drivers, ~0.1 km and ~0.4 km away
    * ``comfort``: available, wrong service type for economy rides
    * ``offline``: economy but unavailable
    * ``far``: economy, ~38 km away (outside the search disk)
    """
    alice = PassengerModel(name="Alice", email="alice@example.com")
    bob = PassengerModel(name="Bob", email="bob@example.com")
    drivers = {
        "near": _driver("Near", ServiceType.ECONOMY, DriverStatus.AVAILABLE, -12.0470, -77.0420),
        "second": _driver("Second", ServiceType.ECONOMY, DriverStatus.AVAILABLE, -12.0500, -77.0415),
        "comfort": _driver("Comfort", ServiceType.COMFORT, DriverStatus.AVAILABLE, -12.0468, -77.0432),
        "offline": _driver("Offline", ServiceType.ECONOMY, DriverStatus.UNAVAILABLE, -12.0466, -77.0426),
        "far": _driver("Far", ServiceType.ECONOMY, DriverStatus.AVAILABLE, -12.3000, -76.8000),
    }
    coupons = [
        CouponModel(
            code="WELCOME10",
            discount_type=DiscountType.PERCENTAGE,
            value=10.0,
            expiry_date=datetime(2100, 1, 1),
            usage_limit=1,
        ),
        CouponModel(
            code="FLAT50",
            discount_type=DiscountType.FIXED,
            value=50.0,
            expiry_date=datetime(2100, 1, 1),
        ),
        CouponModel(
            code="OFF",
            discount_type=DiscountType.PERCENTAGE,
            value=20.0,
            expiry_date=datetime(2100, 1, 1),
            status=CouponStatus.DISABLED,
        ),
    ]
    db_session.add_all([alice, bob, *drivers.values(), *coupons])
    await db_session.commit()

    return SimpleNamespace(
        alice=alice.id,
        bob=bob.id,
        **{name: d.id for name, d in drivers.items()},
    )


@pytest.fixture
def make_request(pickup, dropoff, ride_time):
    """Factory for an economy 10 km / 20 min booking (quotes at 17.50 off-peak)."""

    def _make(passenger_id: int, **overrides) -> RideRequest:
        values = dict(
            passenger_id=passenger_id,
            pickup=Location(*pickup),
            dropoff=Location(*dropoff),
            distance_km=10.0,
            duration_minutes=20.0,
            service_type=ServiceType.ECONOMY,
            payment_method=PaymentMethod.CASH,
            ride_timestamp=ride_time,
        )
        values.update(overrides)
        return RideRequest(**values)

    return _make


@pytest.fixture
def service(db_session: AsyncSession) -> RideService:
    return RideService(db_session, settings)


@pytest.fixture
def coordinator(db_session: AsyncSession) -> AssignmentCoordinator:
    return AssignmentCoordinator(db_session, settings)
