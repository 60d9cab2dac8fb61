"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, fake Redis, a fresh payment
gateway breaker, an ASGI test client, and seeded users/fleet/network rows.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("RESEND_API_KEY", "")

import uuid
from datetime import timedelta

import fakeredis.aioredis
import pytest
from httpx import ASGITransport, AsyncClient
from pybreaker import CircuitBreaker
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.database import Base, get_db
from config.redis_client import get_redis
from config.settings import settings
from main import app
from services.booking.lifecycle import new_trip
from shared.models.models import (
    Driver,
    DriverAvailability,
    DriverStatus,
    Hotpoint,
    Route,
    Trip,
    TripStatus,
    User,
    UserRole,
    UserStatus,
    utcnow,
)
from shared.utils.payment_gateway import MockPaymentGateway, get_payment_gateway
from shared.utils.security import create_access_token, hash_password

TEST_PASSWORD = "Password123!"


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), UserRole(user.role).value, user.email)
    return {"Authorization": f"Bearer {token}"}


# ── Infrastructure ────────────────────────────────────────────

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def breaker():
    return CircuitBreaker(fail_max=3, reset_timeout=60, name="test_gateway")


@pytest.fixture
def gateway(breaker):
    return MockPaymentGateway(breaker=breaker)


@pytest.fixture
async def client(session_factory, redis, gateway):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=f"http://test{settings.API_PREFIX}") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Users ─────────────────────────────────────────────────────

async def _make_user(db: AsyncSession, name: str, email: str, role: UserRole) -> User:
    user = User(
        id=uuid.uuid4(),
        name=name,
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
        status=UserStatus.ACTIVE,
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def user(db: AsyncSession) -> User:
    return await _make_user(db, "Riya Rider", "rider@example.com", UserRole.USER)


@pytest.fixture
async def other_user(db: AsyncSession) -> User:
    return await _make_user(db, "Omar Other", "other@example.com", UserRole.USER)


@pytest.fixture
async def admin_user(db: AsyncSession) -> User:
    return await _make_user(db, "Ada Admin", "admin@example.com", UserRole.ADMIN)


@pytest.fixture
async def driver_user(db: AsyncSession) -> User:
    return await _make_user(db, "Dev Driver", "driver@example.com", UserRole.DRIVER)


@pytest.fixture
async def driver(db: AsyncSession, driver_user: User) -> Driver:
    profile = Driver(
        id=uuid.uuid4(),
        user_id=driver_user.id,
        driver_code="DRV-TEST-0001",
        license_number="LIC-123456",
        years_of_experience=6,
        status=DriverStatus.ACTIVE,
        availability=DriverAvailability.AVAILABLE,
        latitude=40.7130,
        longitude=-74.0050,
    )
    db.add(profile)
    await db.commit()
    return profile


# ── Network ───────────────────────────────────────────────────

@pytest.fixture
async def hotpoints(db: AsyncSession) -> tuple[Hotpoint, Hotpoint]:
    origin = Hotpoint(
        id=uuid.uuid4(),
        name="City Hall",
        city="New York",
        latitude=40.7128,
        longitude=-74.0060,
    )
    destination = Hotpoint(
        id=uuid.uuid4(),
        name="Times Square",
        city="New York",
        latitude=40.7580,
        longitude=-73.9855,
    )
    db.add_all([origin, destination])
    await db.commit()
    return origin, destination


@pytest.fixture
async def route(db: AsyncSession, hotpoints, admin_user: User) -> Route:
    """base 10 + 5 km * 2 = 20.00 per passenger, always running, 4 seats."""
    origin, destination = hotpoints
    r = Route(
        id=uuid.uuid4(),
        name="Downtown Express",
        code="DTX",
        origin_id=origin.id,
        destination_id=destination.id,
        distance_m=5000,
        duration_s=600,
        base_price=10,
        price_per_km=2,
        price_per_minute=0,
        currency="USD",
        seat_capacity=4,
        created_by_id=admin_user.id,
    )
    db.add(r)
    await db.commit()
    return r


@pytest.fixture
async def trip(db: AsyncSession, route: Route, admin_user: User) -> Trip:
    t = new_trip(
        route,
        user_id=admin_user.id,
        scheduled_departure=utcnow() + timedelta(days=3),
        status=TripStatus.CONFIRMED,
        estimated_price=80,
        actor_id=admin_user.id,
    )
    db.add(t)
    await db.commit()
    return t


def future(hours: float = 72) -> str:
    """ISO timestamp `hours` from now, minute-aligned, with a UTC offset."""
    return (utcnow() + timedelta(hours=hours)).replace(second=0, microsecond=0).isoformat()
