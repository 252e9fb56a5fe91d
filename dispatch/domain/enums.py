"""Domain enumerations and state-transition rules."""

from __future__ import annotations

import enum
from typing import Optional


class RideStatus(str, enum.Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class RideAction(str, enum.Enum):
    ACCEPT = "ACCEPT"
    START = "START"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"
    NO_SHOW = "NO_SHOW"
    SWEEP = "SWEEP"  # forced by the cleanup sweeper


# State machine: (current status, action) -> next status
RIDE_TRANSITIONS: dict[tuple[RideStatus, RideAction], RideStatus] = {
    (RideStatus.PENDING, RideAction.ACCEPT): RideStatus.ACCEPTED,
    (RideStatus.SCHEDULED, RideAction.ACCEPT): RideStatus.ACCEPTED,
    (RideStatus.ACCEPTED, RideAction.START): RideStatus.IN_PROGRESS,
    (RideStatus.IN_PROGRESS, RideAction.COMPLETE): RideStatus.COMPLETED,
    (RideStatus.PENDING, RideAction.CANCEL): RideStatus.CANCELLED,
    (RideStatus.SCHEDULED, RideAction.CANCEL): RideStatus.CANCELLED,
    (RideStatus.ACCEPTED, RideAction.CANCEL): RideStatus.CANCELLED,
    (RideStatus.SCHEDULED, RideAction.NO_SHOW): RideStatus.NO_SHOW,
    (RideStatus.ACCEPTED, RideAction.SWEEP): RideStatus.CANCELLED,
    (RideStatus.IN_PROGRESS, RideAction.SWEEP): RideStatus.CANCELLED,
}

INITIAL_STATUSES = frozenset({RideStatus.PENDING, RideStatus.SCHEDULED})
ACTIVE_STATUSES = frozenset({RideStatus.ACCEPTED, RideStatus.IN_PROGRESS})
OPEN_STATUSES = INITIAL_STATUSES | ACTIVE_STATUSES
TERMINAL_STATUSES = frozenset(
    {RideStatus.COMPLETED, RideStatus.CANCELLED, RideStatus.NO_SHOW}
)

# Lower-case labels the polling clients switch on
STATUS_LABELS: dict[RideStatus, str] = {
    RideStatus.PENDING: "pending",
    RideStatus.SCHEDULED: "scheduled",
    RideStatus.ACCEPTED: "accepted",
    RideStatus.IN_PROGRESS: "in_progress",
    RideStatus.COMPLETED: "done",
    RideStatus.CANCELLED: "cancelled",
    RideStatus.NO_SHOW: "no_show",
}


def sources_for(action: RideAction) -> frozenset[RideStatus]:
    """All statuses from which *action* is legal."""
    return frozenset(src for (src, act) in RIDE_TRANSITIONS if act == action)


class Role(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    DRIVER = "DRIVER"
    ADMIN = "ADMIN"


class ServiceKind(str, enum.Enum):
    CAR = "CAR"
    TUKTUK = "TUKTUK"
    LIMO = "LIMO"
    WHEELCHAIR = "WHEELCHAIR"
    DELIVERY = "DELIVERY"
    SHOPPING = "SHOPPING"
    TOW_TRUCK = "TOW_TRUCK"
    TRUCK = "TRUCK"
    WATER_TRUCK = "WATER_TRUCK"
    CLEANING = "CLEANING"
    HAIR_DRESSER = "HAIR_DRESSER"
    BEAUTY = "BEAUTY"

    @classmethod
    def parse(cls, raw: object) -> Optional["ServiceKind"]:
        """Case-insensitive lookup; ``None`` for anything unrecognised."""
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().upper())
        except ValueError:
            return None


class ServiceCategory(str, enum.Enum):
    TRANSPORTATION = "TRANSPORTATION"
    SHOPPING = "SHOPPING"
    CLEANING = "CLEANING"
    HAIR_BEAUTY = "HAIR_BEAUTY"


SERVICE_CATEGORY: dict[ServiceKind, ServiceCategory] = {
    ServiceKind.CAR: ServiceCategory.TRANSPORTATION,
    ServiceKind.TUKTUK: ServiceCategory.TRANSPORTATION,
    ServiceKind.LIMO: ServiceCategory.TRANSPORTATION,
    ServiceKind.WHEELCHAIR: ServiceCategory.TRANSPORTATION,
    ServiceKind.TOW_TRUCK: ServiceCategory.TRANSPORTATION,
    ServiceKind.TRUCK: ServiceCategory.TRANSPORTATION,
    ServiceKind.WATER_TRUCK: ServiceCategory.TRANSPORTATION,
    ServiceKind.DELIVERY: ServiceCategory.SHOPPING,
    ServiceKind.SHOPPING: ServiceCategory.SHOPPING,
    ServiceKind.CLEANING: ServiceCategory.CLEANING,
    ServiceKind.HAIR_DRESSER: ServiceCategory.HAIR_BEAUTY,
    ServiceKind.BEAUTY: ServiceCategory.HAIR_BEAUTY,
}

# Which ride kinds a driver of a given vehicle type may see and claim
_COMPATIBLE_KINDS: dict[ServiceKind, frozenset[ServiceKind]] = {
    ServiceKind.CAR: frozenset(
        {ServiceKind.CAR, ServiceKind.TUKTUK, ServiceKind.DELIVERY, ServiceKind.SHOPPING}
    ),
    ServiceKind.TUKTUK: frozenset(
        {ServiceKind.TUKTUK, ServiceKind.DELIVERY, ServiceKind.SHOPPING}
    ),
    ServiceKind.DELIVERY: frozenset({ServiceKind.DELIVERY, ServiceKind.SHOPPING}),
    ServiceKind.SHOPPING: frozenset({ServiceKind.SHOPPING, ServiceKind.DELIVERY}),
    ServiceKind.TOW_TRUCK: frozenset({ServiceKind.TOW_TRUCK, ServiceKind.TRUCK}),
    ServiceKind.WHEELCHAIR: frozenset(
        {
            ServiceKind.WHEELCHAIR,
            ServiceKind.CAR,
            ServiceKind.TUKTUK,
            ServiceKind.DELIVERY,
            ServiceKind.SHOPPING,
        }
    ),
}


def compatible_kinds(vehicle_type: Optional[ServiceKind]) -> frozenset[ServiceKind]:
    if vehicle_type is None:
        return frozenset()
    return _COMPATIBLE_KINDS.get(vehicle_type, frozenset({vehicle_type}))
