"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: every lifecycle change goes through
  ``next_status`` which consults ``RIDE_TRANSITIONS`` plus the action's
  time/ownership precondition.  The repository then applies the change
  with a ``WHERE status = <observed>`` guard, so the decision made here
  is re-checked atomically in the store.
- ``Driver.can_serve`` encapsulates vehicle-type compatibility.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from . import policies
from .enums import (
    RIDE_TRANSITIONS,
    RideAction,
    RideStatus,
    Role,
    ServiceKind,
    compatible_kinds,
)
from .errors import Conflict, ValidationError

ALREADY_ASSIGNED = "Ride already assigned or not available."
NOT_YOUR_RIDE = "Ride not found or not accepted by you."
RECENT_JOB = (
    "You already have an active or recent job. "
    "Finish it or wait 15 minutes before accepting a new one."
)

# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    id: Optional[int] = None
    customer_id: int = 0
    driver_id: Optional[int] = None
    service_kind: ServiceKind = ServiceKind.CAR
    sub_type: Optional[str] = None
    category_name: Optional[str] = None
    note: Optional[str] = None
    origin: Location = field(default_factory=lambda: Location(0, 0))
    destination: Location = field(default_factory=lambda: Location(0, 0))
    destination_name: Optional[str] = None
    status: RideStatus = RideStatus.PENDING
    requested_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    no_show_reported_at: Optional[datetime] = None
    rating: Optional[int] = None
    feedback: Optional[str] = None

    def next_status(
        self,
        action: RideAction,
        *,
        now: datetime,
        actor_id: Optional[int] = None,
        windows: policies.TimeWindows = policies.DEFAULT_WINDOWS,
    ) -> RideStatus:
        """Return the status *action* leads to, or raise ``Conflict``."""
        target = RIDE_TRANSITIONS.get((self.status, action))
        if target is None:
            if action == RideAction.ACCEPT:
                raise Conflict(ALREADY_ASSIGNED)
            raise Conflict(
                f"Cannot {action.value.lower().replace('_', ' ')} a ride "
                f"in status {self.status.value}"
            )

        if action == RideAction.ACCEPT:
            if self.driver_id is not None:
                raise Conflict(ALREADY_ASSIGNED)
            if self.status == RideStatus.SCHEDULED and not policies.scheduled_acceptable(
                self.scheduled_at, now, windows
            ):
                raise Conflict("Scheduled ride cannot be accepted yet.")
        elif action == RideAction.START:
            if actor_id is None or self.driver_id != actor_id:
                raise Conflict(NOT_YOUR_RIDE)
        elif action == RideAction.NO_SHOW:
            if not policies.no_show_allowed(self.scheduled_at, now, windows):
                raise Conflict(
                    "Cannot mark No Show before scheduled time + "
                    f"{int(windows.no_show_grace.total_seconds() // 60)} min grace period."
                )
        elif action == RideAction.SWEEP:
            if not policies.is_stuck(self, now, windows):
                raise Conflict("Ride is not stale")
        return target

    def check_rateable(self, rating: int) -> None:
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        if self.status != RideStatus.COMPLETED:
            raise Conflict("Can only rate completed rides")
        if self.rating is not None:
            raise Conflict("Ride already rated")


@dataclass
class Driver:
    id: Optional[int] = None
    name: str = ""
    role: Role = Role.DRIVER
    vehicle_type: Optional[ServiceKind] = None
    is_busy: bool = False
    online: bool = False
    last_known: Optional[Location] = None

    def can_serve(self, kind: ServiceKind) -> bool:
        return kind in compatible_kinds(self.vehicle_type)
