"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 1 admin, 4 customers and 6 drivers of different vehicle types
    (spread around central Cairo)
  - 7 sample rides (PENDING, SCHEDULED, ACCEPTED, IN_PROGRESS, COMPLETED)
Prints a bearer token per user for trying the chat and admin endpoints.
"""

import asyncio
from datetime import timedelta

from sqlalchemy import func, select

from dispatch.api.auth import create_access_token
from dispatch.domain.enums import RideStatus, Role, ServiceKind
from dispatch.infrastructure.database import async_session_factory, engine
from dispatch.infrastructure.models import RideModel, UserModel, utcnow

# Tahrir Square (approx)
CENTER_LAT, CENTER_LNG = 30.0444, 31.2357


USERS = [
    {"name": "Dispatch Admin", "email": "admin@example.com", "role": Role.ADMIN},
    {"name": "Mona Adel", "email": "mona@example.com", "role": Role.CUSTOMER},
    {"name": "Omar Hassan", "email": "omar@example.com", "role": Role.CUSTOMER},
    {"name": "Salma Fathy", "email": "salma@example.com", "role": Role.CUSTOMER},
    {"name": "Youssef Nabil", "email": "youssef@example.com", "role": Role.CUSTOMER},
]

DRIVERS = [
    {"name": "Karim Samir", "email": "karim@example.com", "vehicle": ServiceKind.CAR, "lat": 30.0450, "lng": 31.2360},
    {"name": "Hany Lotfy", "email": "hany@example.com", "vehicle": ServiceKind.CAR, "lat": 30.0500, "lng": 31.2400},
    {"name": "Amr Said", "email": "amr@example.com", "vehicle": ServiceKind.TUKTUK, "lat": 30.0420, "lng": 31.2300},
    {"name": "Tarek Ali", "email": "tarek@example.com", "vehicle": ServiceKind.TOW_TRUCK, "lat": 30.0600, "lng": 31.2500},
    {"name": "Nour Ehab", "email": "nour@example.com", "vehicle": ServiceKind.CLEANING, "lat": 30.0550, "lng": 31.2200},
    {"name": "Rana Magdy", "email": "rana@example.com", "vehicle": ServiceKind.WHEELCHAIR, "lat": 30.0480, "lng": 31.2380},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(UserModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = utcnow()

        # ── Users ─────────────────────────────────────────────────────
        users = []
        for u in USERS:
            m = UserModel(name=u["name"], email=u["email"], role=u["role"])
            session.add(m)
            users.append(m)
        drivers = []
        for d in DRIVERS:
            m = UserModel(
                name=d["name"],
                email=d["email"],
                role=Role.DRIVER,
                vehicle_type=d["vehicle"],
                online=True,
                last_known_lat=d["lat"],
                last_known_lng=d["lng"],
                last_location_at=now,
            )
            session.add(m)
            drivers.append(m)
        await session.flush()
        print(f"  Created {len(users)} users and {len(drivers)} drivers")

        customers = [u for u in users if u.role == Role.CUSTOMER]

        # ── Rides ─────────────────────────────────────────────────────
        rides_data = [
            {
                "customer": customers[0], "kind": ServiceKind.CAR,
                "origin": (30.0444, 31.2357), "dest": (30.0626, 31.2497),
                "destination_name": "Ramses Station",
                "status": RideStatus.PENDING,
            },
            {
                "customer": customers[1], "kind": ServiceKind.TUKTUK,
                "origin": (30.0480, 31.2330), "dest": (30.0330, 31.2330),
                "destination_name": "Garden City",
                "status": RideStatus.PENDING,
            },
            {
                "customer": customers[2], "kind": ServiceKind.CLEANING,
                "origin": (30.0561, 31.2243), "dest": (30.0561, 31.2243),
                "destination_name": "Zamalek apartment",
                "status": RideStatus.SCHEDULED,
                "scheduled_in": timedelta(minutes=20),
            },
            {
                "customer": customers[3], "kind": ServiceKind.CAR,
                "origin": (30.0444, 31.2357), "dest": (30.1219, 31.4056),
                "destination_name": "Cairo Airport",
                "status": RideStatus.SCHEDULED,
                "scheduled_in": timedelta(hours=3),
            },
            {
                "customer": customers[0], "kind": ServiceKind.CAR,
                "origin": (30.0500, 31.2400), "dest": (30.0131, 31.2089),
                "destination_name": "Giza",
                "status": RideStatus.ACCEPTED, "driver": drivers[1],
            },
            {
                "customer": customers[1], "kind": ServiceKind.TOW_TRUCK,
                "origin": (30.0600, 31.2500), "dest": (30.0700, 31.2800),
                "destination_name": "Heliopolis garage",
                "status": RideStatus.IN_PROGRESS, "driver": drivers[3],
            },
            {
                "customer": customers[2], "kind": ServiceKind.CAR,
                "origin": (30.0444, 31.2357), "dest": (29.9792, 31.1342),
                "destination_name": "Pyramids",
                "status": RideStatus.COMPLETED, "driver": drivers[0],
                "rating": 5,
            },
        ]

        for r in rides_data:
            driver = r.get("driver")
            status = r["status"]
            ride = RideModel(
                customer_id=r["customer"].id,
                driver_id=driver.id if driver else None,
                service_kind=r["kind"],
                origin_lat=r["origin"][0],
                origin_lng=r["origin"][1],
                dest_lat=r["dest"][0],
                dest_lng=r["dest"][1],
                destination_name=r["destination_name"],
                status=status,
                requested_at=now - timedelta(minutes=5),
                scheduled_at=now + r["scheduled_in"] if "scheduled_in" in r else None,
                accepted_at=now if driver else None,
                started_at=now if status in (RideStatus.IN_PROGRESS, RideStatus.COMPLETED) else None,
                completed_at=now if status == RideStatus.COMPLETED else None,
                rating=r.get("rating"),
            )
            session.add(ride)
            if driver and status in (RideStatus.ACCEPTED, RideStatus.IN_PROGRESS):
                driver.is_busy = True
        await session.flush()
        print(f"  Created {len(rides_data)} rides")

        await session.commit()

        print("\nBearer tokens:")
        for u in users + drivers:
            print(f"  {u.role.value:<8} {u.email:<22} {create_access_token(u.id, u.role)}")
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
