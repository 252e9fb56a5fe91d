"""
Time-Window Policies
====================

Pure decision functions over ride timestamps.  ``now`` is always passed
in, never read from the clock, so every rule is testable with a fixed
instant.

Windows (defaults)
------------------
* **Scheduled visibility**  -- a SCHEDULED ride is offered to drivers while
  ``scheduled_at - 30 min <= now <= scheduled_at + 60 min``.
* **Early accept**          -- a SCHEDULED ride can be claimed from
  ``scheduled_at - 30 min`` onwards.
* **No-show grace**         -- NO_SHOW may be reported once
  ``now >= scheduled_at + 10 min``.
* **Stuck ride**            -- ACCEPTED older than 15 min (by ``accepted_at``)
  or IN_PROGRESS older than 15 min (by ``started_at``).
* **Category auto-cancel**  -- any open ride past
  ``reference_time + CANCELLATION_RULES[key]`` hours.
* **Unaccepted**            -- an unassigned PENDING ride older than 60 min
  (by ``requested_at``), or an unassigned SCHEDULED ride 60 min past
  ``scheduled_at``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable, Optional

from .enums import (
    ACTIVE_STATUSES,
    OPEN_STATUSES,
    SERVICE_CATEGORY,
    RideStatus,
)

if TYPE_CHECKING:
    from .entities import Ride


# Maximum hours an open ride may live, keyed by service category name
CANCELLATION_RULES: dict[str, int] = {
    "TRANSPORTATION": 2,
    "RIDE": 2,
    "SHOPPING": 3,
    "PROPERTY_CARE": 72,
    "ENGINEERING": 72,
    "CLEANING": 48,
    "HUMAN_CARE": 48,
    "PET_CARE": 48,
    "LIFESTYLE": 72,
    "LEGAL_SERVICES": 72,
    "HAIR_BEAUTY": 48,
    "IT_SERVICES": 72,
    "REALTOR": 72,
    "TUTOR": 72,
}

REASON_STUCK = "stuck"
REASON_AUTO_CANCEL = "auto_cancel"
REASON_UNACCEPTED = "unaccepted"


@dataclass(frozen=True)
class TimeWindows:
    schedule_lead: timedelta = timedelta(minutes=30)
    schedule_tail: timedelta = timedelta(minutes=60)
    no_show_grace: timedelta = timedelta(minutes=10)
    stale_after: timedelta = timedelta(minutes=15)
    pending_visibility: timedelta = timedelta(minutes=60)
    default_cancel_hours: int = 48

    @classmethod
    def from_settings(cls, settings) -> "TimeWindows":
        return cls(
            schedule_lead=timedelta(minutes=settings.schedule_lead_minutes),
            schedule_tail=timedelta(minutes=settings.schedule_tail_minutes),
            no_show_grace=timedelta(minutes=settings.no_show_grace_minutes),
            stale_after=timedelta(minutes=settings.stale_ride_minutes),
            pending_visibility=timedelta(minutes=settings.pending_visibility_minutes),
            default_cancel_hours=settings.default_cancel_hours,
        )


DEFAULT_WINDOWS = TimeWindows()


@dataclass(frozen=True)
class Transition:
    """A forced status change decided by :func:`plan_sweep`."""

    ride_id: int
    from_status: RideStatus
    to_status: RideStatus
    reason: str
    driver_id: Optional[int] = None


# ── Visibility / acceptance ───────────────────────────────────────────


def scheduled_visible(
    scheduled_at: datetime, now: datetime, windows: TimeWindows = DEFAULT_WINDOWS
) -> bool:
    return (
        scheduled_at - windows.schedule_lead
        <= now
        <= scheduled_at + windows.schedule_tail
    )


def pending_visible(
    requested_at: datetime, now: datetime, windows: TimeWindows = DEFAULT_WINDOWS
) -> bool:
    return requested_at >= now - windows.pending_visibility


def scheduled_acceptable(
    scheduled_at: Optional[datetime],
    now: datetime,
    windows: TimeWindows = DEFAULT_WINDOWS,
) -> bool:
    if scheduled_at is None:
        return True
    return now >= scheduled_at - windows.schedule_lead


def no_show_allowed(
    scheduled_at: Optional[datetime],
    now: datetime,
    windows: TimeWindows = DEFAULT_WINDOWS,
) -> bool:
    if scheduled_at is None:
        return False
    return now >= scheduled_at + windows.no_show_grace


def recent_activity_cutoff(
    now: datetime, windows: TimeWindows = DEFAULT_WINDOWS
) -> datetime:
    """Rides accepted/started after this instant still count as the driver's job."""
    return now - windows.stale_after


# ── Sweeper rules ─────────────────────────────────────────────────────


def cancellation_key(ride: "Ride") -> str:
    if ride.category_name and ride.category_name.strip():
        return ride.category_name.strip().upper()
    category = SERVICE_CATEGORY.get(ride.service_kind)
    return category.value if category else ""


def max_open_hours(ride: "Ride", windows: TimeWindows = DEFAULT_WINDOWS) -> int:
    return CANCELLATION_RULES.get(cancellation_key(ride), windows.default_cancel_hours)


def reference_time(ride: "Ride") -> Optional[datetime]:
    if ride.scheduled_at is not None and ride.status in (
        RideStatus.SCHEDULED,
        RideStatus.PENDING,
    ):
        return ride.scheduled_at
    return ride.requested_at


def auto_cancel_deadline(
    ride: "Ride", windows: TimeWindows = DEFAULT_WINDOWS
) -> Optional[datetime]:
    ref = reference_time(ride)
    if ref is None:
        return None
    return ref + timedelta(hours=max_open_hours(ride, windows))


def is_stuck(ride: "Ride", now: datetime, windows: TimeWindows = DEFAULT_WINDOWS) -> bool:
    cutoff = now - windows.stale_after
    if ride.status == RideStatus.ACCEPTED:
        return ride.accepted_at is not None and ride.accepted_at < cutoff
    if ride.status == RideStatus.IN_PROGRESS:
        return ride.started_at is not None and ride.started_at < cutoff
    return False


def is_expired(ride: "Ride", now: datetime, windows: TimeWindows = DEFAULT_WINDOWS) -> bool:
    if ride.status not in OPEN_STATUSES:
        return False
    deadline = auto_cancel_deadline(ride, windows)
    return deadline is not None and now >= deadline


def is_unaccepted(
    ride: "Ride", now: datetime, windows: TimeWindows = DEFAULT_WINDOWS
) -> bool:
    """No driver took the ride before it dropped out of the job feed."""
    if ride.driver_id is not None:
        return False
    if ride.status == RideStatus.PENDING:
        return (
            ride.requested_at is not None
            and ride.requested_at < now - windows.pending_visibility
        )
    if ride.status == RideStatus.SCHEDULED:
        return (
            ride.scheduled_at is not None
            and ride.scheduled_at < now - windows.schedule_tail
        )
    return False


def plan_sweep(
    rides: Iterable["Ride"],
    now: datetime,
    *,
    stuck: bool = True,
    category: bool = True,
    windows: TimeWindows = DEFAULT_WINDOWS,
) -> list[Transition]:
    """
    Decide which open rides must be force-cancelled at *now*.

    Terminal rides are ignored, so re-running on the post-sweep state
    yields an empty plan.  A ride is listed at most once, by the first
    matching rule: stuck, then category deadline, then unaccepted.  The
    ``stuck`` flag covers both the stuck and the unaccepted rule.
    """
    plan: list[Transition] = []
    for ride in rides:
        if ride.id is None or ride.status not in OPEN_STATUSES:
            continue
        reason = None
        if stuck and ride.status in ACTIVE_STATUSES and is_stuck(ride, now, windows):
            reason = REASON_STUCK
        elif category and is_expired(ride, now, windows):
            reason = REASON_AUTO_CANCEL
        elif stuck and is_unaccepted(ride, now, windows):
            reason = REASON_UNACCEPTED
        if reason:
            plan.append(
                Transition(
                    ride_id=ride.id,
                    from_status=ride.status,
                    to_status=RideStatus.CANCELLED,
                    reason=reason,
                    driver_id=ride.driver_id,
                )
            )
    return plan
