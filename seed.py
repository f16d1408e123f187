"""
Seed script -- populates the database with sample data for local runs.

Run after migrations:
    python seed.py

Creates:
  - 4 passengers
  - 6 drivers (4 online, 2 offline), all available
  - 1 manager
  - 1 open trip request already broadcast to the online drivers

Prints a bearer token per user so the API can be exercised from /docs.
"""

import asyncio

from sqlalchemy import text

from src.api.auth import create_access_token
from src.domain.enums import TripRequestStatus, UserRole
from src.domain.pricing import calculate_price
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import (
    DriverModel,
    TripRequestModel,
    UserModel,
    utcnow,
)
from src.services.dispatch import fan_out

# Tel Aviv central station (approx)
HUB_LAT, HUB_LNG = 32.0565, 34.7794


PASSENGERS = [
    {"id": "passenger-noa", "name": "Noa Levi"},
    {"id": "passenger-omer", "name": "Omer Cohen"},
    {"id": "passenger-yael", "name": "Yael Mizrahi"},
    {"id": "passenger-amir", "name": "Amir Haddad"},
]

DRIVERS = [
    {"id": "driver-avi", "name": "Avi Peretz", "online": True},
    {"id": "driver-dana", "name": "Dana Friedman", "online": True},
    {"id": "driver-yossi", "name": "Yossi Biton", "online": True},
    {"id": "driver-maya", "name": "Maya Azoulay", "online": True},
    {"id": "driver-eli", "name": "Eli Katz", "online": False},
    {"id": "driver-rina", "name": "Rina Shapiro", "online": False},
]

MANAGER = {"id": "manager-tal", "name": "Tal Ben-David"}


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = utcnow()

        # ── Users ─────────────────────────────────────────────────────
        for p in PASSENGERS:
            session.add(UserModel(id=p["id"], name=p["name"], role=UserRole.PASSENGER))
        for d in DRIVERS:
            session.add(UserModel(id=d["id"], name=d["name"], role=UserRole.DRIVER))
        session.add(UserModel(id=MANAGER["id"], name=MANAGER["name"], role=UserRole.MANAGER))
        await session.flush()
        print(f"  Created {len(PASSENGERS) + len(DRIVERS) + 1} users")

        # ── Drivers ───────────────────────────────────────────────────
        for d in DRIVERS:
            session.add(
                DriverModel(
                    id=d["id"], is_online=d["online"], is_available=True, updated_at=now
                )
            )
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers")

        # ── An open request, broadcast ────────────────────────────────
        distance_km = 6.4  # central station -> old Jaffa port
        request = TripRequestModel(
            passenger_id=PASSENGERS[0]["id"],
            pickup_lat=HUB_LAT,
            pickup_lng=HUB_LNG,
            dropoff_lat=32.0543,
            dropoff_lng=34.7508,
            estimated_distance_km=distance_km,
            estimated_duration_min=12.8,
            estimated_price_ils=calculate_price(distance_km),
            status=TripRequestStatus.OPEN,
            created_at=now,
        )
        session.add(request)
        await session.flush()
        offered = await fan_out(session, request, now)
        print(f"  Created trip request {request.id} offered to {len(offered)} drivers")

        await session.commit()
        print("\nSeed complete! Bearer tokens:")
        for user_id in [p["id"] for p in PASSENGERS] + [d["id"] for d in DRIVERS] + [MANAGER["id"]]:
            print(f"  {user_id}: {create_access_token(user_id, expires_minutes=24 * 60)}")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
