"""
Shared test fixtures.

Each test gets a fresh SQLite *file* database (via aiosqlite) built from
the production ORM metadata, so tests run without Docker / PostgreSQL /
Redis.  A file (rather than ``:memory:``) gives every session its own
connection, which lets concurrent claims serialise through SQLite's
write lock the way they would through row locks in PostgreSQL.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from dispatch.api.app import create_app
from dispatch.api.auth import create_access_token
from dispatch.api.dependencies import get_db, get_timezone_lookup
from dispatch.api.middleware import limiter
from dispatch.api.routes.admin import get_session_factory
from dispatch.domain.enums import RideStatus, Role, ServiceKind
from dispatch.infrastructure.database import Base
from dispatch.infrastructure.models import RideModel, UserModel
from dispatch.infrastructure.notifications import Notifier, get_notifier
from dispatch.infrastructure.timezone_lookup import TimezoneLookup

# Example scenario pickup
ORIGIN = (30.04, 31.23)
DESTINATION = (30.06, 31.25)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session_factory) -> dict[str, int]:
    """customer, customer2, driver_a / driver_b (CAR), tuktuk, tow, admin."""
    specs = {
        "customer": dict(name="Mona", email="mona@example.com", role=Role.CUSTOMER),
        "customer2": dict(name="Omar", email="omar@example.com", role=Role.CUSTOMER),
        "driver_a": dict(
            name="Karim", email="karim@example.com", role=Role.DRIVER,
            vehicle_type=ServiceKind.CAR,
        ),
        "driver_b": dict(
            name="Hany", email="hany@example.com", role=Role.DRIVER,
            vehicle_type=ServiceKind.CAR,
        ),
        "tuktuk": dict(
            name="Amr", email="amr@example.com", role=Role.DRIVER,
            vehicle_type=ServiceKind.TUKTUK,
        ),
        "tow": dict(
            name="Tarek", email="tarek@example.com", role=Role.DRIVER,
            vehicle_type=ServiceKind.TOW_TRUCK,
        ),
        "admin": dict(name="Admin", email="admin@example.com", role=Role.ADMIN),
    }
    async with session_factory() as session:
        models = {key: UserModel(**spec) for key, spec in specs.items()}
        session.add_all(models.values())
        await session.commit()
        return {key: m.id for key, m in models.items()}


async def make_ride(
    session_factory: async_sessionmaker,
    customer_id: int,
    *,
    status: RideStatus = RideStatus.PENDING,
    service_kind: ServiceKind = ServiceKind.CAR,
    driver_id: Optional[int] = None,
    requested_at: Optional[datetime] = None,
    scheduled_at: Optional[datetime] = None,
    accepted_at: Optional[datetime] = None,
    started_at: Optional[datetime] = None,
    completed_at: Optional[datetime] = None,
    no_show_reported_by: Optional[int] = None,
    category_name: Optional[str] = None,
    origin: tuple[float, float] = ORIGIN,
) -> int:
    """Insert a ride row directly, bypassing the lifecycle (for time travel)."""
    async with session_factory() as session:
        ride = RideModel(
            customer_id=customer_id,
            driver_id=driver_id,
            service_kind=service_kind,
            category_name=category_name,
            origin_lat=origin[0],
            origin_lng=origin[1],
            dest_lat=DESTINATION[0],
            dest_lng=DESTINATION[1],
            status=status,
            requested_at=requested_at or datetime.now(timezone.utc),
            scheduled_at=scheduled_at,
            accepted_at=accepted_at,
            started_at=started_at,
            completed_at=completed_at,
            no_show_reported_by=no_show_reported_by,
        )
        session.add(ride)
        await session.commit()
        return ride.id


async def set_busy(session_factory: async_sessionmaker, driver_id: int, busy: bool = True):
    async with session_factory() as session:
        driver = await session.get(UserModel, driver_id)
        driver.is_busy = busy
        await session.commit()


async def fetch_user(session_factory: async_sessionmaker, user_id: int) -> UserModel:
    async with session_factory() as session:
        return await session.get(UserModel, user_id)


async def fetch_ride(session_factory: async_sessionmaker, ride_id: int) -> Optional[RideModel]:
    async with session_factory() as session:
        return await session.get(RideModel, ride_id)


# ── API ───────────────────────────────────────────────────────────────


def bearer(user_id: int, role: Role) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """API client bound to the per-test database; no Redis, no outbound HTTP."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: Notifier(webhook_url="")
    app.dependency_overrides[get_timezone_lookup] = lambda: TimezoneLookup(
        api_key="", fallback="Africa/Cairo"
    )
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    limiter.enabled = True


def future(minutes: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)
