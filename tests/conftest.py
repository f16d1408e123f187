"""
Shared test fixtures.

Uses a temporary-file SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  ``NullPool`` gives every session its own
connection, so concurrent transactions really contend for the database
lock and the compare-and-swap updates decide races exactly as in
production.
"""

from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.api.auth import create_access_token
from src.api.middleware import limiter
from src.domain.entities import Caller, Location
from src.domain.enums import OfferStatus, TripRequestStatus, UserRole
from src.domain.pricing import calculate_price
from src.infrastructure.database import Base
from src.infrastructure.models import (
    DriverModel,
    DriverOfferModel,
    TripRequestModel,
    UserModel,
    new_id,
    utcnow,
)
from src.infrastructure.routing import DistanceOracle, HaversineRouteProvider

# Tel Aviv central station -> Dizengoff square, roughly 3 km
PICKUP = Location(lat=32.0565, lng=34.7794)
DROPOFF = Location(lat=32.0779, lng=34.7741)


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def oracle() -> DistanceOracle:
    return DistanceOracle(None, HaversineRouteProvider(30.0))


# ── Seed data ─────────────────────────────────────────────────────────


class Seeder:
    """Writes rows directly, bypassing the services under test."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _add(self, *rows):
        async with self.session_factory() as session:
            session.add_all(rows)
            await session.commit()

    async def passenger(self, user_id: str = "passenger-1") -> Caller:
        await self._add(UserModel(id=user_id, name=user_id, role=UserRole.PASSENGER))
        return Caller(user_id, UserRole.PASSENGER)

    async def manager(self, user_id: str = "manager-1") -> Caller:
        await self._add(UserModel(id=user_id, name=user_id, role=UserRole.MANAGER))
        return Caller(user_id, UserRole.MANAGER)

    async def driver(
        self, user_id: str = "driver-1", *, online: bool = True, available: bool = True
    ) -> Caller:
        await self._add(
            UserModel(id=user_id, name=user_id, role=UserRole.DRIVER),
            DriverModel(
                id=user_id, is_online=online, is_available=available, updated_at=utcnow()
            ),
        )
        return Caller(user_id, UserRole.DRIVER)

    async def request(
        self,
        passenger_id: str = "passenger-1",
        *,
        status: TripRequestStatus = TripRequestStatus.OPEN,
        created_at: Optional[datetime] = None,
        distance_km: float = 3.0,
    ) -> str:
        request_id = new_id()
        await self._add(
            TripRequestModel(
                id=request_id,
                passenger_id=passenger_id,
                pickup_lat=PICKUP.lat,
                pickup_lng=PICKUP.lng,
                dropoff_lat=DROPOFF.lat,
                dropoff_lng=DROPOFF.lng,
                estimated_distance_km=distance_km,
                estimated_duration_min=6.0,
                estimated_price_ils=calculate_price(distance_km),
                status=status,
                created_at=created_at or utcnow(),
            )
        )
        return request_id

    async def offer(
        self,
        driver_id: str,
        request_id: str,
        *,
        expires_in: timedelta = timedelta(seconds=120),
        trip_id: Optional[str] = None,
        passenger_id: str = "passenger-1",
    ) -> str:
        now = utcnow()
        offer_id = new_id()
        await self._add(
            DriverOfferModel(
                id=offer_id,
                driver_id=driver_id,
                request_id=request_id,
                trip_id=trip_id,
                passenger_id=passenger_id,
                pickup_lat=PICKUP.lat,
                pickup_lng=PICKUP.lng,
                dropoff_lat=DROPOFF.lat,
                dropoff_lng=DROPOFF.lng,
                estimated_distance_km=3.0,
                estimated_duration_min=6.0,
                estimated_price_ils=calculate_price(3.0),
                status=OfferStatus.PENDING,
                created_at=now,
                expires_at=now + expires_in,
            )
        )
        return offer_id

    async def get(self, model, key):
        async with self.session_factory() as session:
            return await session.get(model, key)

    async def count(self, model) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return result.scalar_one()


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


# ── HTTP client ───────────────────────────────────────────────────────


def auth(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest_asyncio.fixture
async def client(session_factory, monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient against the real app, backed by the temporary database."""
    from src.api.app import create_app
    from src.api.dependencies import get_db

    monkeypatch.setattr(limiter, "enabled", False)

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_db] = _test_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
