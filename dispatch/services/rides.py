"""
Ride Lifecycle Service
======================

Orchestrates the state machine, the assignment guard and the busy tracker
over one ``AsyncSession``.

Every mutation follows the same shape:

1. read the ride and let ``Ride.next_status`` decide (fast, friendly
   ``Conflict`` messages);
2. apply the change with a conditional ``UPDATE`` that re-checks the
   status that was read;
3. zero affected rows means someone else got there first: ``Conflict``,
   nothing changed;
4. commit, then hand any customer notification to ``defer`` (FastAPI
   ``BackgroundTasks.add_task``) so delivery never blocks or fails the
   transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from dispatch.config import settings
from dispatch.domain import policies
from dispatch.domain.distance import estimate_eta_minutes, haversine_km
from dispatch.domain.entities import (
    ALREADY_ASSIGNED,
    NOT_YOUR_RIDE,
    RECENT_JOB,
    Location,
)
from dispatch.domain.enums import (
    STATUS_LABELS,
    RideAction,
    RideStatus,
    Role,
    ServiceKind,
    compatible_kinds,
)
from dispatch.domain.errors import Conflict, Forbidden, NotFound, ValidationError
from dispatch.domain.timezones import local_to_utc, to_local_display, to_local_iso
from dispatch.infrastructure import notifications
from dispatch.infrastructure.models import RideModel, UserModel, utcnow
from dispatch.infrastructure.notifications import Notifier
from dispatch.infrastructure.repositories import (
    DriverRepository,
    RideRepository,
    UserRepository,
    to_driver_entity,
    to_ride_entity,
)

logger = logging.getLogger(__name__)


@dataclass
class RideView:
    """A ride plus the read-side extras the history endpoints show."""

    ride: RideModel
    driver: Optional[UserModel] = None
    distance_km: Optional[float] = None
    eta_minutes: Optional[int] = None


class RideLifecycle:
    def __init__(
        self,
        session: AsyncSession,
        *,
        windows: Optional[policies.TimeWindows] = None,
        notifier: Optional[Notifier] = None,
        defer: Optional[Callable[..., Any]] = None,
    ):
        self.session = session
        self.windows = windows or policies.TimeWindows.from_settings(settings)
        self.rides = RideRepository(session)
        self.users = UserRepository(session)
        self.drivers = DriverRepository(session)
        self.notifier = notifier
        self._defer = defer

    # ── Helpers ───────────────────────────────────────────────────

    async def get(self, ride_id: int) -> RideModel:
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            raise NotFound("Ride", ride_id)
        return ride

    async def _driver(self, driver_id: int) -> UserModel:
        driver = await self.drivers.get_by_id(driver_id, fresh=True)
        if driver is None:
            raise NotFound("Driver", driver_id)
        return driver

    async def _notify(self, event: str, ride: RideModel) -> None:
        if self.notifier is None:
            return
        payload = {
            "rideId": ride.id,
            "customerId": ride.customer_id,
            "driverId": ride.driver_id,
            "status": STATUS_LABELS[RideStatus(ride.status)],
        }
        if self._defer is not None:
            self._defer(self.notifier.send, event, payload)
        else:
            await self.notifier.send(event, payload)

    def _to_utc_schedule(
        self, scheduled_at: Union[str, datetime], time_zone: Optional[str], now: datetime
    ) -> datetime:
        value = local_to_utc(scheduled_at, time_zone or settings.local_timezone)
        if value <= now:
            raise ValidationError("scheduledAt must be in the future")
        return value

    # ── Creation / editing ────────────────────────────────────────

    async def request_ride(
        self,
        *,
        customer_id: int,
        service_kind: Union[str, ServiceKind],
        origin: Location,
        destination: Location,
        scheduled_at: Union[str, datetime, None] = None,
        time_zone: Optional[str] = None,
        sub_type: Optional[str] = None,
        category_name: Optional[str] = None,
        note: Optional[str] = None,
        destination_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RideModel:
        now = now or utcnow()
        kind = (
            service_kind
            if isinstance(service_kind, ServiceKind)
            else ServiceKind.parse(service_kind)
        )
        if kind is None:
            raise ValidationError(f"Unknown service kind: {service_kind}")

        customer = await self.users.get_by_id(customer_id)
        if customer is None:
            raise NotFound("Customer", customer_id)
        if Role(customer.role) != Role.CUSTOMER:
            raise Forbidden("Only customers can request rides")

        status = RideStatus.PENDING
        scheduled_utc = None
        if scheduled_at is not None:
            scheduled_utc = self._to_utc_schedule(scheduled_at, time_zone, now)
            status = RideStatus.SCHEDULED

        ride = await self.rides.create(
            customer_id=customer_id,
            service_kind=kind,
            sub_type=sub_type,
            category_name=category_name,
            note=note,
            origin_lat=origin.latitude,
            origin_lng=origin.longitude,
            dest_lat=destination.latitude,
            dest_lng=destination.longitude,
            destination_name=destination_name,
            status=status,
            requested_at=now,
            scheduled_at=scheduled_utc,
            updated_at=now,
        )
        await self.session.commit()
        logger.info(
            "Ride %s created by customer %s (%s, %s)",
            ride.id, customer_id, kind.value, status.value,
        )
        return ride

    async def edit_scheduled(
        self,
        ride_id: int,
        customer_id: int,
        *,
        scheduled_at: Union[str, datetime, None] = None,
        time_zone: Optional[str] = None,
        note: Optional[str] = None,
        sub_type: Optional[str] = None,
        destination: Optional[Location] = None,
        destination_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RideModel:
        now = now or utcnow()
        ride = await self.get(ride_id)
        if ride.customer_id != customer_id:
            raise Forbidden("Only the ride's customer can edit it")
        if RideStatus(ride.status) != RideStatus.SCHEDULED:
            raise Conflict("Only scheduled rides can be edited")

        values: dict[str, Any] = {}
        if scheduled_at is not None:
            values["scheduled_at"] = self._to_utc_schedule(scheduled_at, time_zone, now)
        if note is not None:
            values["note"] = note
        if sub_type is not None:
            values["sub_type"] = sub_type
        if destination is not None:
            values["dest_lat"] = destination.latitude
            values["dest_lng"] = destination.longitude
        if destination_name is not None:
            values["destination_name"] = destination_name
        if not values:
            return ride

        if not await self.rides.update_scheduled(ride_id, updated_at=now, **values):
            raise Conflict("Only scheduled rides can be edited")
        await self.session.commit()
        logger.info("Scheduled ride %s edited (%s)", ride_id, ", ".join(sorted(values)))
        return await self.get(ride_id)

    # ── Transitions ───────────────────────────────────────────────

    async def accept(
        self, ride_id: int, driver_id: int, now: Optional[datetime] = None
    ) -> RideModel:
        """Assignment guard: at most one driver wins a given ride."""
        now = now or utcnow()
        driver = await self._driver(driver_id)
        ride = await self.get(ride_id)
        entity = to_ride_entity(ride)
        if not to_driver_entity(driver).can_serve(entity.service_kind):
            raise Forbidden("Your vehicle type cannot serve this ride")
        entity.next_status(RideAction.ACCEPT, now=now, actor_id=driver_id, windows=self.windows)

        # Claim and busy flag commit together; the driver row lock keeps two
        # accepts by the same driver from both passing the recent-job check.
        await self.drivers.lock_for_assignment(driver_id)
        if not await self.rides.claim(ride_id, driver_id, now, self.windows.schedule_lead):
            await self.session.rollback()
            logger.info("Driver %s lost the claim on ride %s", driver_id, ride_id)
            raise Conflict(ALREADY_ASSIGNED)
        cutoff = policies.recent_activity_cutoff(now, self.windows)
        if not await self.drivers.mark_busy(driver_id, ride_id, cutoff):
            await self.session.rollback()
            logger.info("Driver %s already holds a job, ride %s released", driver_id, ride_id)
            raise Conflict(RECENT_JOB)
        await self.session.commit()

        logger.info("Ride %s accepted by driver %s", ride_id, driver_id)
        ride = await self.get(ride_id)
        await self._notify(notifications.RIDE_ACCEPTED, ride)
        return ride

    async def start(
        self, ride_id: int, driver_id: int, now: Optional[datetime] = None
    ) -> RideModel:
        now = now or utcnow()
        ride = await self.get(ride_id)
        to_ride_entity(ride).next_status(
            RideAction.START, now=now, actor_id=driver_id, windows=self.windows
        )
        moved = await self.rides.transition(
            ride_id,
            [RideStatus.ACCEPTED],
            RideStatus.IN_PROGRESS,
            RideModel.driver_id == driver_id,
            now=now,
            started_at=now,
        )
        if not moved:
            raise Conflict(NOT_YOUR_RIDE)
        await self.session.commit()
        logger.info("Ride %s started by driver %s", ride_id, driver_id)
        return await self.get(ride_id)

    async def complete(self, ride_id: int, now: Optional[datetime] = None) -> RideModel:
        now = now or utcnow()
        ride = await self.get(ride_id)
        to_ride_entity(ride).next_status(RideAction.COMPLETE, now=now, windows=self.windows)
        driver_id = ride.driver_id
        moved = await self.rides.transition(
            ride_id,
            [RideStatus.IN_PROGRESS],
            RideStatus.COMPLETED,
            now=now,
            completed_at=now,
        )
        if not moved:
            raise Conflict("Ride is no longer in progress")
        if driver_id is not None:
            await self.drivers.release_if_idle(driver_id)
        await self.session.commit()
        logger.info("Ride %s completed (driver %s)", ride_id, driver_id)
        ride = await self.get(ride_id)
        await self._notify(notifications.RIDE_COMPLETED, ride)
        return ride

    async def cancel(self, ride_id: int, now: Optional[datetime] = None) -> RideModel:
        now = now or utcnow()
        ride = await self.get(ride_id)
        observed = RideStatus(ride.status)
        to_ride_entity(ride).next_status(RideAction.CANCEL, now=now, windows=self.windows)
        driver_id = ride.driver_id
        moved = await self.rides.transition(
            ride_id,
            [observed],
            RideStatus.CANCELLED,
            now=now,
            cancelled_at=now,
            driver_id=None,
        )
        if not moved:
            raise Conflict("Ride status changed; refresh and try again")
        if driver_id is not None:
            await self.drivers.release_if_idle(driver_id)
        await self.session.commit()
        logger.info("Ride %s cancelled from %s", ride_id, observed.value)
        ride = await self.get(ride_id)
        await self._notify(notifications.RIDE_CANCELLED, ride)
        return ride

    async def mark_no_show(
        self, ride_id: int, driver_id: int, now: Optional[datetime] = None
    ) -> RideModel:
        now = now or utcnow()
        await self._driver(driver_id)
        ride = await self.get(ride_id)
        to_ride_entity(ride).next_status(
            RideAction.NO_SHOW, now=now, actor_id=driver_id, windows=self.windows
        )
        moved = await self.rides.transition(
            ride_id,
            [RideStatus.SCHEDULED],
            RideStatus.NO_SHOW,
            RideModel.scheduled_at <= now - self.windows.no_show_grace,
            now=now,
            no_show_reported_at=now,
            no_show_reported_by=driver_id,
        )
        if not moved:
            raise Conflict("Ride is no longer scheduled")
        await self.session.commit()
        logger.info("Ride %s marked NO_SHOW by driver %s", ride_id, driver_id)
        ride = await self.get(ride_id)
        await self._notify(notifications.RIDE_NO_SHOW, ride)
        return ride

    async def rate(
        self, ride_id: int, rating: int, feedback: Optional[str] = None
    ) -> RideModel:
        ride = await self.get(ride_id)
        to_ride_entity(ride).check_rateable(rating)
        if not await self.rides.set_rating(ride_id, rating, feedback):
            # Lost a race: report the state we actually find
            to_ride_entity(await self.get(ride_id)).check_rateable(rating)
            raise Conflict("Ride already rated")
        await self.session.commit()
        logger.info("Ride %s rated %d", ride_id, rating)
        return await self.get(ride_id)

    # ── Read models ───────────────────────────────────────────────

    async def status_snapshot(
        self, ride_id: int, time_zone: Optional[str] = None
    ) -> dict[str, Any]:
        ride = await self.get(ride_id)
        zone = time_zone or settings.local_timezone
        return {
            "rideId": ride.id,
            "status": STATUS_LABELS[RideStatus(ride.status)],
            "driverId": ride.driver_id,
            "scheduledAt": to_local_iso(ride.scheduled_at, zone),
            "scheduledAtDisplay": to_local_display(ride.scheduled_at, zone),
        }

    async def customer_rides(self, customer_id: int) -> list[RideView]:
        customer = await self.users.get_by_id(customer_id)
        if customer is None:
            raise NotFound("Customer", customer_id)
        rides = await self.rides.for_customer(customer_id)
        drivers = await self.users.get_many(r.driver_id for r in rides)
        views = []
        for ride in rides:
            driver = drivers.get(ride.driver_id)
            view = RideView(ride=ride, driver=driver)
            if (
                driver is not None
                and RideStatus(ride.status) == RideStatus.ACCEPTED
                and driver.last_known_lat is not None
                and driver.last_known_lng is not None
            ):
                view.distance_km = haversine_km(
                    driver.last_known_lat, driver.last_known_lng,
                    ride.origin_lat, ride.origin_lng,
                )
                view.eta_minutes = estimate_eta_minutes(view.distance_km)
            views.append(view)
        return views

    async def driver_rides(self, driver_id: int) -> list[RideModel]:
        await self._driver(driver_id)
        return await self.rides.for_driver(driver_id)

    async def current_ride(
        self, user_id: int, role: Role, now: Optional[datetime] = None
    ) -> Optional[RideModel]:
        now = now or utcnow()
        if role == Role.DRIVER:
            return await self.rides.current_for_driver(user_id)
        if role == Role.CUSTOMER:
            return await self.rides.current_for_customer(
                user_id, now, self.windows.schedule_lead
            )
        return None

    async def available_for_driver(
        self,
        driver_id: int,
        now: Optional[datetime] = None,
        *,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> list[RideView]:
        """
        The driver's job feed: unassigned rides of a compatible kind inside
        their visibility window, nearest first when a position is known.
        """
        now = now or utcnow()
        driver = await self._driver(driver_id)
        kinds = compatible_kinds(
            ServiceKind(driver.vehicle_type) if driver.vehicle_type else None
        )
        rides = await self.rides.available_for(
            kinds,
            now,
            lead=self.windows.schedule_lead,
            tail=self.windows.schedule_tail,
            pending_visibility=self.windows.pending_visibility,
        )

        if lat is None or lng is None:
            lat, lng = driver.last_known_lat, driver.last_known_lng
        if lat is None or lng is None:
            return [RideView(ride=r) for r in rides]

        views = []
        for ride in rides:
            distance = haversine_km(lat, lng, ride.origin_lat, ride.origin_lng)
            if distance <= settings.available_radius_km:
                views.append(
                    RideView(
                        ride=ride,
                        distance_km=round(distance, 2),
                        eta_minutes=estimate_eta_minutes(distance),
                    )
                )
        views.sort(key=lambda v: v.distance_km)
        return views

    async def update_driver_location(
        self,
        driver_id: int,
        *,
        lat: float,
        lng: float,
        online: bool = True,
        now: Optional[datetime] = None,
    ) -> UserModel:
        now = now or utcnow()
        await self._driver(driver_id)
        await self.drivers.update_location(
            driver_id, lat=lat, lng=lng, online=online, now=now
        )
        await self.session.commit()
        return await self.drivers.get_by_id(driver_id, fresh=True)
