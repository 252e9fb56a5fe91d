"""
Admin read models and tooling.

Sort keys are matched against explicit allow-lists before they reach
the query builder; pagination is clamped rather than rejected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.config import settings
from dispatch.domain.enums import ServiceKind
from dispatch.domain.errors import NotFound, ValidationError
from dispatch.domain.timezones import utc_to_local_string
from dispatch.infrastructure.models import RideModel, UserModel, utcnow
from dispatch.infrastructure.repositories import (
    DRIVER_SORT_FIELDS,
    RIDE_SORT_FIELDS,
    DriverRepository,
    RideRepository,
    UserRepository,
)
from dispatch.infrastructure.timezone_lookup import TimezoneLookup

logger = logging.getLogger(__name__)


def sort_params(
    sort_by: Optional[str],
    order: Optional[str],
    allowed: frozenset[str],
    default_field: str,
    default_order: str = "desc",
) -> tuple[str, bool]:
    """Return ``(field, descending)``; unknown values fall back to the defaults."""
    field = sort_by if sort_by in allowed else default_field
    direction = order if order in ("asc", "desc") else default_order
    return field, direction == "desc"


def page_params(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    limit = limit or settings.admin_page_limit
    return max(1, min(settings.admin_page_max, limit)), max(0, offset or 0)


@dataclass
class AdminRideRow:
    ride: RideModel
    customer: Optional[UserModel]
    driver: Optional[UserModel]
    pickup_time_zone: str
    scheduled_at_local: Optional[str]


class AdminService:
    def __init__(
        self, session: AsyncSession, timezones: Optional[TimezoneLookup] = None
    ):
        self.session = session
        self.rides = RideRepository(session)
        self.users = UserRepository(session)
        self.drivers = DriverRepository(session)
        self.timezones = timezones or TimezoneLookup()

    async def list_rides(
        self,
        *,
        sort_by: Optional[str] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[AdminRideRow]:
        now = now or utcnow()
        field, descending = sort_params(
            sort_by, order, frozenset(RIDE_SORT_FIELDS), "requestedAt"
        )
        limit, offset = page_params(limit, offset)
        rides = await self.rides.list_for_admin(
            sort_by=field,
            descending=descending,
            limit=limit,
            offset=offset,
            scheduled_until=now + timedelta(minutes=settings.schedule_tail_minutes),
        )
        users = await self.users.get_many(
            [r.customer_id for r in rides] + [r.driver_id for r in rides]
        )

        rows = []
        for ride in rides:
            zone = await self.timezones.zone_for(ride.origin_lat, ride.origin_lng)
            rows.append(
                AdminRideRow(
                    ride=ride,
                    customer=users.get(ride.customer_id),
                    driver=users.get(ride.driver_id),
                    pickup_time_zone=zone,
                    scheduled_at_local=utc_to_local_string(ride.scheduled_at, zone),
                )
            )
        return rows

    async def list_drivers(
        self,
        *,
        sort_by: Optional[str] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        online: Optional[bool] = None,
        vehicle_type: Optional[str] = None,
    ) -> list[UserModel]:
        field, descending = sort_params(
            sort_by, order, frozenset(DRIVER_SORT_FIELDS), "id"
        )
        limit, offset = page_params(limit, offset)
        kind = None
        if vehicle_type:
            kind = ServiceKind.parse(vehicle_type)
            if kind is None:
                raise ValidationError(f"Unknown vehicle type: {vehicle_type}")
        return await self.drivers.list_drivers(
            sort_by=field,
            descending=descending,
            limit=limit,
            offset=offset,
            online=online,
            vehicle_type=kind,
        )

    async def customer_no_shows(self, customer_id: int) -> int:
        if await self.users.get_by_id(customer_id) is None:
            raise NotFound("Customer", customer_id)
        return await self.rides.count_no_shows(customer_id=customer_id)

    async def driver_no_shows(self, driver_id: int) -> int:
        if await self.drivers.get_by_id(driver_id) is None:
            raise NotFound("Driver", driver_id)
        return await self.rides.count_no_shows(driver_id=driver_id)

    async def delete_ride(self, ride_id: int) -> None:
        ride = await self.rides.get_by_id(ride_id)
        if ride is None:
            raise NotFound("Ride", ride_id)
        driver_id = ride.driver_id
        await self.rides.delete(ride_id)
        if driver_id is not None:
            await self.drivers.release_if_idle(driver_id)
        await self.session.commit()
        logger.warning("Ride %s hard-deleted by admin", ride_id)
