"""
Shared fixtures: a throwaway SQLite database per test, an in-memory Redis
stand-in, JWT helpers and row factories.
"""
import os

# Must be set before rideflow reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["GEOCODER_BASE_URL"] = ""
os.environ["ROUTING_BASE_URL"] = ""
os.environ.pop("NEW_RELIC_LICENSE_KEY", None)

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rideflow import redis_client
from rideflow.database import Base, get_db
from rideflow.main import app
from rideflow.middleware.auth import create_access_token
from rideflow.models import Driver, Ride, Vehicle
from rideflow.services import pricing
from rideflow.services.pricing import get_tariff


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache and idempotency paths."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    async def aclose(self):
        pass


@pytest.fixture(autouse=True)
def fake_redis():
    fake = FakeRedis()
    redis_client._redis_pool = fake
    yield fake
    redis_client._redis_pool = None


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    # A file (not :memory:) so concurrent sessions get their own connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rideflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(sub: str, role: str = "rider") -> dict:
        token = create_access_token({"sub": sub, "role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def make_vehicle(db):
    counter = {"n": 0}

    async def _make(vehicle_class: str = "car", status: str = "available") -> Vehicle:
        counter["n"] += 1
        vehicle = Vehicle(
            make="Toyota",
            model="Corolla",
            license_plate=f"ABJ-{counter['n']:04d}",
            vehicle_class=vehicle_class,
            capacity=get_tariff(vehicle_class).capacity,
            status=status,
        )
        db.add(vehicle)
        await db.commit()
        return vehicle

    return _make


@pytest.fixture
def make_driver(db, make_vehicle):
    counter = {"n": 0}

    async def _make(
        status: str = "active",
        vehicle_class: str | None = "car",
    ) -> Driver:
        counter["n"] += 1
        driver = Driver(name=f"Driver {counter['n']}", phone=f"+23480000{counter['n']:05d}", status=status)
        db.add(driver)
        await db.commit()
        if vehicle_class is not None:
            vehicle = await make_vehicle(vehicle_class, status="assigned")
            vehicle.assigned_driver_id = driver.id
            driver.vehicle_id = vehicle.id
            await db.commit()
        return driver

    return _make


@pytest.fixture
def make_ride(db):
    async def _make(
        rider_id: str = "rider-1",
        vehicle_class: str = "car",
        status: str = "pending",
        distance_km: float = 5.0,
        duration_min: int = 15,
    ) -> Ride:
        fare = pricing.estimate(distance_km, duration_min, vehicle_class)
        ride = Ride(
            rider_id=rider_id,
            pickup_address="Wuse 2, Abuja",
            pickup_lat=9.0765,
            pickup_lng=7.3986,
            dest_address="Maitama, Abuja",
            dest_lat=9.0882,
            dest_lng=7.4934,
            vehicle_class=vehicle_class,
            status=status,
            payment_method="cash",
            distance_km=distance_km,
            duration_min=duration_min,
            base_fare=fare.base_fare,
            distance_fare=fare.distance_fare,
            time_fare=fare.time_fare,
            service_fee=fare.service_fee,
            total_fare=fare.total_fare,
            currency=fare.currency,
            requested_at=datetime.now(timezone.utc),
        )
        db.add(ride)
        await db.commit()
        return ride

    return _make
