"""
Cleanup Sweeper
===============

Forces terminal transitions the clock demands:

* **stuck rides**  -- ACCEPTED / IN_PROGRESS untouched for 15 min, and
  unassigned rides nobody took within an hour, every
  ``STUCK_SWEEP_INTERVAL_SECONDS`` (default 300 s);
* **category auto-cancel** -- open rides past their per-category deadline,
  every ``AUTO_CANCEL_INTERVAL_SECONDS`` (default 3600 s).

Concurrency safety
------------------
* **Redis distributed lock** per sweep kind ensures only one process runs
  a given kind of cycle at a time across API workers and cron invocations.
* Each forced transition is a conditional ``UPDATE`` guarded by the
  status the sweep observed, in **its own transaction**: a ride a driver
  completes mid-sweep is simply skipped, and one bad row never blocks the
  batch.

Algorithm per cycle
-------------------
1. Load all open rides.
2. ``plan_sweep(rides, now)`` -- pure decision, no I/O.
3. Apply each transition (set ``cancelled_at``, clear ``driver_id``,
   release the driver's busy flag if idle).
4. Reconcile busy flags with no ACCEPTED / IN_PROGRESS ride behind them.
5. Log counts.

Run standalone (cron)::

    python -m dispatch.workers.sweeper [--stuck-only | --auto-cancel-only]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dispatch.config import settings
from dispatch.domain.policies import TimeWindows, Transition, plan_sweep
from dispatch.infrastructure.locks import DistributedLock
from dispatch.infrastructure.models import utcnow
from dispatch.infrastructure.redis_client import close_redis, get_redis
from dispatch.infrastructure.repositories import (
    DriverRepository,
    RideRepository,
    to_ride_entity,
)

logger = logging.getLogger(__name__)

STUCK_LOCK_KEY = "ride_sweeper:stuck"
AUTO_CANCEL_LOCK_KEY = "ride_sweeper:auto_cancel"

_tasks: list[asyncio.Task] = []
_stop_event: Optional[asyncio.Event] = None


@dataclass
class SweepReport:
    examined: int = 0
    cancelled: list[Transition] = field(default_factory=list)
    skipped: int = 0  # state moved on between plan and apply
    failed: int = 0
    released_drivers: int = 0

    @property
    def changed(self) -> int:
        return len(self.cancelled)


# ── One sweep ─────────────────────────────────────────────────────────


async def _apply(
    session: AsyncSession, transition: Transition, now: datetime
) -> bool:
    rides = RideRepository(session)
    moved = await rides.transition(
        transition.ride_id,
        [transition.from_status],
        transition.to_status,
        now=now,
        cancelled_at=now,
        driver_id=None,
    )
    if not moved:
        await session.rollback()
        return False
    if transition.driver_id is not None:
        await DriverRepository(session).release_if_idle(transition.driver_id)
    await session.commit()
    return True


async def sweep_once(
    session_factory: async_sessionmaker,
    now: Optional[datetime] = None,
    *,
    stuck: bool = True,
    category: bool = True,
    windows: Optional[TimeWindows] = None,
) -> SweepReport:
    """Plan and apply one sweep at *now*.  Running it twice in a row is a no-op."""
    now = now or utcnow()
    windows = windows or TimeWindows.from_settings(settings)
    report = SweepReport()

    async with session_factory() as session:
        open_rides = await RideRepository(session).get_open_rides()
        rides = [to_ride_entity(r) for r in open_rides]
    report.examined = len(rides)

    for transition in plan_sweep(
        rides, now, stuck=stuck, category=category, windows=windows
    ):
        try:
            async with session_factory() as session:
                applied = await _apply(session, transition, now)
        except Exception:
            report.failed += 1
            logger.exception("Sweep failed for ride %s", transition.ride_id)
            continue
        if applied:
            report.cancelled.append(transition)
            logger.info(
                "Ride %s cancelled by sweeper (%s, was %s, driver %s)",
                transition.ride_id,
                transition.reason,
                transition.from_status.value,
                transition.driver_id,
            )
        else:
            report.skipped += 1

    try:
        async with session_factory() as session:
            report.released_drivers = await DriverRepository(
                session
            ).reconcile_busy_flags()
            await session.commit()
    except Exception:
        logger.exception("Busy-flag reconciliation failed")

    logger.info(
        "Sweep done: examined=%d cancelled=%d skipped=%d failed=%d released=%d",
        report.examined,
        report.changed,
        report.skipped,
        report.failed,
        report.released_drivers,
    )
    return report


async def run_sweep_cycle(
    session_factory: Optional[async_sessionmaker] = None,
    *,
    stuck: bool = True,
    category: bool = True,
    now: Optional[datetime] = None,
) -> Optional[SweepReport]:
    """
    One sweep under the Redis lock of each kind it runs.

    Stuck and auto-cancel sweeps lock separately so the two loops never
    skip each other.  ``None`` when another holder has any of the locks.
    """
    if session_factory is None:
        from dispatch.infrastructure.database import async_session_factory

        session_factory = async_session_factory

    keys = _lock_keys(stuck=stuck, category=category)
    redis = await get_redis()
    held: list[DistributedLock] = []
    try:
        for key in keys:
            lock = DistributedLock(
                redis, key, ttl_seconds=settings.sweeper_lock_ttl_seconds
            )
            if not await lock.acquire():
                logger.debug("Lock %s held by another sweeper, skipping cycle", key)
                return None
            held.append(lock)
        return await sweep_once(session_factory, now, stuck=stuck, category=category)
    finally:
        for lock in reversed(held):
            await lock.release()


def _lock_keys(*, stuck: bool, category: bool) -> list[str]:
    keys = []
    if stuck:
        keys.append(STUCK_LOCK_KEY)
    if category:
        keys.append(AUTO_CANCEL_LOCK_KEY)
    return keys


# ── In-process loop ───────────────────────────────────────────────────


async def start_sweeper() -> None:
    global _stop_event
    _stop_event = asyncio.Event()
    _tasks.append(
        asyncio.create_task(
            _loop(settings.stuck_sweep_interval_seconds, stuck=True, category=False)
        )
    )
    _tasks.append(
        asyncio.create_task(
            _loop(settings.auto_cancel_interval_seconds, stuck=False, category=True)
        )
    )
    logger.info(
        "Sweeper started (stuck every %ds, auto-cancel every %ds)",
        settings.stuck_sweep_interval_seconds,
        settings.auto_cancel_interval_seconds,
    )


async def stop_sweeper() -> None:
    if _stop_event:
        _stop_event.set()
    while _tasks:
        task = _tasks.pop()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    logger.info("Sweeper stopped")


async def _loop(interval: int, *, stuck: bool, category: bool) -> None:
    """Periodic loop: run a cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle(stuck=stuck, category=category)
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(_stop_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass  # next cycle


# ── CLI ───────────────────────────────────────────────────────────────


async def _main(stuck: bool, category: bool) -> int:
    from dispatch.infrastructure.database import engine

    try:
        report = await run_sweep_cycle(stuck=stuck, category=category)
    finally:
        await close_redis()
        await engine.dispose()
    if report is None:
        return 0
    return 1 if report.failed else 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m dispatch.workers.sweeper",
        description="Run one cleanup sweep over open rides.",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--stuck-only",
        action="store_true",
        help="only cancel stuck and unaccepted rides",
    )
    group.add_argument(
        "--auto-cancel-only",
        action="store_true",
        help="only apply the per-category deadlines",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return asyncio.run(
        _main(stuck=not args.auto_cancel_only, category=not args.stuck_only)
    )


if __name__ == "__main__":
    raise SystemExit(main())
