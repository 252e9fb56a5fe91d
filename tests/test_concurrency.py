"""
Concurrency safety tests.

Demonstrates:
1. The assignment guard lets exactly one of N simultaneous drivers win.
2. A stale decision (ride moved on after it was read) changes nothing.
3. Distributed lock prevents simultaneous acquire.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from dispatch.domain.entities import ALREADY_ASSIGNED, RECENT_JOB
from dispatch.domain.enums import RideStatus, Role, ServiceKind
from dispatch.domain.errors import Conflict
from dispatch.infrastructure.locks import DistributedLock, LockNotAcquired
from dispatch.infrastructure.models import UserModel, utcnow
from dispatch.services.rides import RideLifecycle
from tests.conftest import fetch_ride, fetch_user, make_ride


async def _make_drivers(session_factory, count: int) -> list[int]:
    async with session_factory() as session:
        drivers = [
            UserModel(
                name=f"Driver {i}",
                email=f"driver{i}@example.com",
                role=Role.DRIVER,
                vehicle_type=ServiceKind.CAR,
            )
            for i in range(count)
        ]
        session.add_all(drivers)
        await session.commit()
        return [d.id for d in drivers]


async def _accept(session_factory, ride_id: int, driver_id: int):
    async with session_factory() as session:
        try:
            await RideLifecycle(session).accept(ride_id, driver_id)
            return driver_id
        except Conflict as exc:
            return exc


class TestAssignmentGuard:
    @pytest.mark.asyncio
    async def test_exactly_one_of_many_drivers_wins(self, session_factory, users):
        ride_id = await make_ride(session_factory, users["customer"])
        driver_ids = await _make_drivers(session_factory, 6)

        results = await asyncio.gather(
            *(_accept(session_factory, ride_id, d) for d in driver_ids)
        )

        winners = [r for r in results if isinstance(r, int)]
        losers = [r for r in results if isinstance(r, Conflict)]
        assert len(winners) == 1
        assert len(losers) == len(driver_ids) - 1
        assert all(exc.message == ALREADY_ASSIGNED for exc in losers)

        ride = await fetch_ride(session_factory, ride_id)
        assert ride.status == RideStatus.ACCEPTED
        assert ride.driver_id == winners[0]

        for driver_id in driver_ids:
            driver = await fetch_user(session_factory, driver_id)
            assert driver.is_busy is (driver_id == winners[0])

    @pytest.mark.asyncio
    async def test_same_driver_cannot_hold_two_recent_jobs(self, session_factory, users):
        first = await make_ride(session_factory, users["customer"])
        second = await make_ride(session_factory, users["customer2"])

        async with session_factory() as session:
            await RideLifecycle(session).accept(first, users["driver_a"])

        async with session_factory() as session:
            with pytest.raises(Conflict) as exc:
                await RideLifecycle(session).accept(second, users["driver_a"])
        assert exc.value.message == RECENT_JOB

        ride = await fetch_ride(session_factory, second)
        assert ride.status == RideStatus.PENDING
        assert ride.driver_id is None

    @pytest.mark.asyncio
    async def test_same_driver_racing_for_two_rides_gets_one(self, session_factory, users):
        first = await make_ride(session_factory, users["customer"])
        second = await make_ride(session_factory, users["customer2"])

        results = await asyncio.gather(
            _accept(session_factory, first, users["driver_a"]),
            _accept(session_factory, second, users["driver_a"]),
        )

        losers = [r for r in results if isinstance(r, Conflict)]
        assert len(losers) == 1
        assert losers[0].message == RECENT_JOB

        rides = [await fetch_ride(session_factory, r) for r in (first, second)]
        assert sorted(r.status.value for r in rides) == sorted(
            [RideStatus.ACCEPTED.value, RideStatus.PENDING.value]
        )
        held = [r for r in rides if r.status == RideStatus.ACCEPTED]
        assert held[0].driver_id == users["driver_a"]
        released = [r for r in rides if r.status == RideStatus.PENDING]
        assert released[0].driver_id is None
        assert (await fetch_user(session_factory, users["driver_a"])).is_busy is True

    @pytest.mark.asyncio
    async def test_stale_ride_does_not_block_new_job(self, session_factory, users):
        await make_ride(
            session_factory,
            users["customer"],
            status=RideStatus.ACCEPTED,
            driver_id=users["driver_a"],
            accepted_at=utcnow() - timedelta(minutes=20),
        )
        fresh = await make_ride(session_factory, users["customer2"])

        async with session_factory() as session:
            ride = await RideLifecycle(session).accept(fresh, users["driver_a"])
        assert ride.driver_id == users["driver_a"]

    @pytest.mark.asyncio
    async def test_stale_conditional_update_changes_nothing(self, session_factory, users):
        ride_id = await make_ride(session_factory, users["customer"])

        # Driver B reads the ride as PENDING; driver A claims it meanwhile.
        async with session_factory() as session_b:
            lifecycle_b = RideLifecycle(session_b)
            before = await lifecycle_b.get(ride_id)
            assert before.status == RideStatus.PENDING

            async with session_factory() as session_a:
                await RideLifecycle(session_a).accept(ride_id, users["driver_a"])

            claimed = await lifecycle_b.rides.claim(
                ride_id, users["driver_b"], utcnow(), lifecycle_b.windows.schedule_lead
            )
            assert claimed is False
            await session_b.rollback()

        ride = await fetch_ride(session_factory, ride_id)
        assert ride.driver_id == users["driver_a"]
        driver_b = await fetch_user(session_factory, users["driver_b"])
        assert driver_b.is_busy is False

    @pytest.mark.asyncio
    async def test_cancel_racing_accept_leaves_one_outcome(self, session_factory, users):
        ride_id = await make_ride(session_factory, users["customer"])

        async def cancel():
            async with session_factory() as session:
                try:
                    return await RideLifecycle(session).cancel(ride_id)
                except Conflict as exc:
                    return exc

        results = await asyncio.gather(
            _accept(session_factory, ride_id, users["driver_a"]), cancel()
        )
        ride = await fetch_ride(session_factory, ride_id)
        assert ride.status in (RideStatus.ACCEPTED, RideStatus.CANCELLED)
        driver = await fetch_user(session_factory, users["driver_a"])
        if ride.status == RideStatus.CANCELLED:
            assert ride.driver_id is None
            assert driver.is_busy is False
        else:
            assert ride.driver_id == users["driver_a"]
            assert isinstance(results[1], Conflict)


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:test-key", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_only_own_token(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=0)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is False

        args = mock_redis.eval.await_args.args
        assert args[1:] == (1, "lock:test-key", lock.token)

    @pytest.mark.asyncio
    async def test_context_manager_releases(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        async with DistributedLock(mock_redis, "test-key"):
            pass
        mock_redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass
