"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Every status change is a single conditional ``UPDATE`` whose ``WHERE``
clause re-checks the state the caller observed; the affected row count is
the success signal.  Read-modify-write on ride or driver rows is never
assumed safe.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import and_, delete, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ChatModel, MessageModel, RideModel, UserModel
from dispatch.domain.entities import Driver, Location, Ride
from dispatch.domain.enums import (
    ACTIVE_STATUSES,
    OPEN_STATUSES,
    RideStatus,
    Role,
    ServiceKind,
)

# API sort keys -> columns.  Anything else falls back to the default.
RIDE_SORT_FIELDS = {
    "id": RideModel.id,
    "requestedAt": RideModel.requested_at,
    "scheduledAt": RideModel.scheduled_at,
}

DRIVER_SORT_FIELDS = {
    "id": UserModel.id,
    "name": UserModel.name,
    "email": UserModel.email,
    "vehicleType": UserModel.vehicle_type,
    "online": UserModel.online,
    "isBusy": UserModel.is_busy,
}


def to_ride_entity(model: RideModel) -> Ride:
    return Ride(
        id=model.id,
        customer_id=model.customer_id,
        driver_id=model.driver_id,
        service_kind=ServiceKind(model.service_kind),
        sub_type=model.sub_type,
        category_name=model.category_name,
        note=model.note,
        origin=Location(model.origin_lat, model.origin_lng),
        destination=Location(model.dest_lat, model.dest_lng),
        destination_name=model.destination_name,
        status=RideStatus(model.status),
        requested_at=model.requested_at,
        scheduled_at=model.scheduled_at,
        accepted_at=model.accepted_at,
        started_at=model.started_at,
        completed_at=model.completed_at,
        cancelled_at=model.cancelled_at,
        no_show_reported_at=model.no_show_reported_at,
        rating=model.rating,
        feedback=model.feedback,
    )


def to_driver_entity(model: UserModel) -> Driver:
    last_known = None
    if model.last_known_lat is not None and model.last_known_lng is not None:
        last_known = Location(model.last_known_lat, model.last_known_lng)
    return Driver(
        id=model.id,
        name=model.name,
        role=Role(model.role),
        vehicle_type=ServiceKind(model.vehicle_type) if model.vehicle_type else None,
        is_busy=bool(model.is_busy),
        online=bool(model.online),
        last_known=last_known,
    )


def _active_ride_for(driver_id) -> Any:
    return exists().where(
        RideModel.driver_id == driver_id,
        RideModel.status.in_(ACTIVE_STATUSES),
    )


def _recent_active_ride_for(driver_id, cutoff: datetime, *, other_than=None) -> Any:
    """A ride still counted as the driver's current job at *cutoff*."""
    query = exists().where(
        RideModel.driver_id == driver_id,
        or_(
            and_(
                RideModel.status == RideStatus.ACCEPTED,
                RideModel.accepted_at >= cutoff,
            ),
            and_(
                RideModel.status == RideStatus.IN_PROGRESS,
                RideModel.started_at >= cutoff,
            ),
        ),
    )
    if other_than is not None:
        query = query.where(RideModel.id != other_than)
    return query


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> RideModel:
        ride = RideModel(**fields)
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int, *, fresh: bool = False) -> Optional[RideModel]:
        """``fresh`` bypasses the identity map after a bulk ``UPDATE``."""
        return await self.session.get(RideModel, ride_id, populate_existing=fresh)

    async def _conditional_update(self, *criteria: Any, values: dict[str, Any]) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ── Lifecycle writes ──────────────────────────────────────────

    async def claim(
        self, ride_id: int, driver_id: int, now: datetime, lead: timedelta
    ) -> bool:
        """
        Assignment guard: bind *driver_id* to an unassigned ride.

        Exactly one concurrent caller can see ``rowcount == 1``; the rest
        find ``driver_id`` already set or the status already moved.
        """
        return await self._conditional_update(
            RideModel.id == ride_id,
            RideModel.driver_id.is_(None),
            or_(
                RideModel.status == RideStatus.PENDING,
                and_(
                    RideModel.status == RideStatus.SCHEDULED,
                    RideModel.scheduled_at <= now + lead,
                ),
            ),
            values={
                "status": RideStatus.ACCEPTED,
                "driver_id": driver_id,
                "accepted_at": now,
                "updated_at": now,
            },
        )

    async def transition(
        self,
        ride_id: int,
        from_statuses: Iterable[RideStatus],
        to_status: RideStatus,
        *criteria: Any,
        now: datetime,
        **values: Any,
    ) -> bool:
        """Move the ride to *to_status* only if it is still in *from_statuses*."""
        return await self._conditional_update(
            RideModel.id == ride_id,
            RideModel.status.in_(list(from_statuses)),
            *criteria,
            values={"status": to_status, "updated_at": now, **values},
        )

    async def set_rating(
        self, ride_id: int, rating: int, feedback: Optional[str]
    ) -> bool:
        return await self._conditional_update(
            RideModel.id == ride_id,
            RideModel.status == RideStatus.COMPLETED,
            RideModel.rating.is_(None),
            values={"rating": rating, "feedback": feedback},
        )

    async def update_scheduled(self, ride_id: int, **values: Any) -> bool:
        return await self._conditional_update(
            RideModel.id == ride_id,
            RideModel.status == RideStatus.SCHEDULED,
            values=values,
        )

    async def delete(self, ride_id: int) -> bool:
        chat_ids = select(ChatModel.id).where(ChatModel.ride_id == ride_id)
        await self.session.execute(
            delete(MessageModel).where(MessageModel.chat_id.in_(chat_ids))
        )
        await self.session.execute(delete(ChatModel).where(ChatModel.ride_id == ride_id))
        result = await self.session.execute(
            delete(RideModel).where(RideModel.id == ride_id)
        )
        return result.rowcount == 1

    # ── Queries ───────────────────────────────────────────────────

    async def get_open_rides(self) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.status.in_(OPEN_STATUSES))
            .order_by(RideModel.id)
        )
        return list(result.scalars().all())

    async def available_for(
        self,
        kinds: Iterable[ServiceKind],
        now: datetime,
        *,
        lead: timedelta,
        tail: timedelta,
        pending_visibility: timedelta,
    ) -> list[RideModel]:
        kinds = list(kinds)
        if not kinds:
            return []
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.driver_id.is_(None),
                RideModel.service_kind.in_(kinds),
                or_(
                    and_(
                        RideModel.status == RideStatus.SCHEDULED,
                        RideModel.scheduled_at <= now + lead,
                        RideModel.scheduled_at >= now - tail,
                    ),
                    and_(
                        RideModel.status == RideStatus.PENDING,
                        RideModel.requested_at >= now - pending_visibility,
                    ),
                ),
            )
            .order_by(
                func.coalesce(RideModel.scheduled_at, RideModel.requested_at),
                RideModel.id,
            )
        )
        return list(result.scalars().all())

    async def for_customer(self, customer_id: int) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.customer_id == customer_id)
            .order_by(
                func.coalesce(RideModel.scheduled_at, RideModel.requested_at),
                RideModel.id,
            )
        )
        return list(result.scalars().all())

    async def for_driver(self, driver_id: int) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.driver_id == driver_id)
            .order_by(
                func.coalesce(RideModel.scheduled_at, RideModel.requested_at),
                RideModel.id,
            )
        )
        return list(result.scalars().all())

    async def current_for_customer(
        self, customer_id: int, now: datetime, lead: timedelta
    ) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.customer_id == customer_id,
                or_(
                    RideModel.status.in_(
                        [RideStatus.PENDING, RideStatus.ACCEPTED, RideStatus.IN_PROGRESS]
                    ),
                    and_(
                        RideModel.status == RideStatus.SCHEDULED,
                        RideModel.scheduled_at <= now + lead,
                    ),
                ),
            )
            .order_by(RideModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def current_for_driver(self, driver_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.driver_id == driver_id,
                RideModel.status.in_(ACTIVE_STATUSES),
            )
            .order_by(RideModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_admin(
        self,
        *,
        sort_by: str,
        descending: bool,
        limit: int,
        offset: int,
        scheduled_until: Optional[datetime] = None,
    ) -> list[RideModel]:
        column = RIDE_SORT_FIELDS.get(sort_by, RideModel.requested_at)
        query = select(RideModel)
        if scheduled_until is not None:
            query = query.where(
                or_(
                    RideModel.status != RideStatus.SCHEDULED,
                    RideModel.scheduled_at <= scheduled_until,
                )
            )
        query = (
            query.order_by(
                RideModel.status.asc(),
                column.desc() if descending else column.asc(),
                RideModel.id.desc() if descending else RideModel.id.asc(),
            )
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_no_shows(
        self, *, customer_id: Optional[int] = None, driver_id: Optional[int] = None
    ) -> int:
        query = (
            select(func.count())
            .select_from(RideModel)
            .where(RideModel.status == RideStatus.NO_SHOW)
        )
        if customer_id is not None:
            query = query.where(RideModel.customer_id == customer_id)
        if driver_id is not None:
            query = query.where(RideModel.no_show_reported_by == driver_id)
        result = await self.session.execute(query)
        return result.scalar() or 0


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def get_many(self, user_ids: Iterable[int]) -> dict[int, UserModel]:
        ids = {uid for uid in user_ids if uid is not None}
        if not ids:
            return {}
        result = await self.session.execute(
            select(UserModel).where(UserModel.id.in_(ids))
        )
        return {u.id: u for u in result.scalars().all()}


class DriverRepository:
    """Busy/availability bookkeeping on driver rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, driver_id: int, *, fresh: bool = False
    ) -> Optional[UserModel]:
        user = await self.session.get(UserModel, driver_id, populate_existing=fresh)
        if user is None or Role(user.role) != Role.DRIVER:
            return None
        return user

    async def lock_for_assignment(self, driver_id: int) -> None:
        """Row-lock the driver so their accepts run one at a time (no-op on SQLite)."""
        await self.session.execute(
            select(UserModel.id).where(UserModel.id == driver_id).with_for_update()
        )

    async def mark_busy(self, driver_id: int, ride_id: int, cutoff: datetime) -> bool:
        """
        Flag the driver busy for *ride_id*, unless another recent job holds them.

        ``rowcount == 0`` means the driver already has a job; the caller
        must roll back its claim.
        """
        result = await self.session.execute(
            update(UserModel)
            .where(
                UserModel.id == driver_id,
                UserModel.role == Role.DRIVER,
                ~_recent_active_ride_for(driver_id, cutoff, other_than=ride_id),
            )
            .values(is_busy=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_if_idle(self, driver_id: int) -> bool:
        """Clear ``is_busy`` unless the driver still owns an active ride."""
        result = await self.session.execute(
            update(UserModel)
            .where(
                UserModel.id == driver_id,
                UserModel.is_busy.is_(True),
                ~_active_ride_for(driver_id),
            )
            .values(is_busy=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def reconcile_busy_flags(self) -> int:
        """Clear every busy flag that no ACCEPTED/IN_PROGRESS ride backs."""
        backing = (
            select(RideModel.id)
            .where(
                RideModel.driver_id == UserModel.id,
                RideModel.status.in_(ACTIVE_STATUSES),
            )
            .correlate(UserModel)
            .exists()
        )
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.is_busy.is_(True), ~backing)
            .values(is_busy=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def update_location(
        self, driver_id: int, *, lat: float, lng: float, online: bool, now: datetime
    ) -> bool:
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == driver_id, UserModel.role == Role.DRIVER)
            .values(
                last_known_lat=lat,
                last_known_lng=lng,
                online=online,
                last_location_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_drivers(
        self,
        *,
        sort_by: str,
        descending: bool,
        limit: int,
        offset: int,
        online: Optional[bool] = None,
        vehicle_type: Optional[ServiceKind] = None,
    ) -> list[UserModel]:
        column = DRIVER_SORT_FIELDS.get(sort_by, UserModel.id)
        query = select(UserModel).where(UserModel.role == Role.DRIVER)
        if online is not None:
            query = query.where(UserModel.online.is_(online))
        if vehicle_type is not None:
            query = query.where(UserModel.vehicle_type == vehicle_type)
        query = (
            query.order_by(column.desc() if descending else column.asc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())


class ChatRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_ride(self, ride_id: int) -> Optional[ChatModel]:
        result = await self.session.execute(
            select(ChatModel).where(ChatModel.ride_id == ride_id)
        )
        return result.scalar_one_or_none()

    async def create(self, *, ride_id: int, customer_id: int, driver_id: int) -> ChatModel:
        chat = ChatModel(ride_id=ride_id, customer_id=customer_id, driver_id=driver_id)
        self.session.add(chat)
        await self.session.flush()
        return chat

    async def list_messages(self, chat_id: int) -> list[tuple[MessageModel, UserModel]]:
        result = await self.session.execute(
            select(MessageModel, UserModel)
            .join(UserModel, UserModel.id == MessageModel.sender_id)
            .where(MessageModel.chat_id == chat_id)
            .order_by(MessageModel.sent_at, MessageModel.id)
        )
        return [(m, u) for m, u in result.all()]

    async def add_message(
        self, *, chat_id: int, sender_id: int, content: str, now: datetime
    ) -> MessageModel:
        message = MessageModel(
            chat_id=chat_id, sender_id=sender_id, content=content, sent_at=now
        )
        self.session.add(message)
        await self.session.flush()
        return message

