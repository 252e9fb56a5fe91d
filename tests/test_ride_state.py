"""Unit tests for ride entity state transitions (State Pattern)."""

from datetime import datetime, timedelta, timezone

import pytest

from dispatch.domain.entities import ALREADY_ASSIGNED, Driver, Ride
from dispatch.domain.enums import (
    RIDE_TRANSITIONS,
    STATUS_LABELS,
    TERMINAL_STATUSES,
    RideAction,
    RideStatus,
    ServiceKind,
    sources_for,
)
from dispatch.domain.errors import Conflict, ValidationError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestRideStateMachine:
    def test_initial_status_is_pending(self):
        ride = Ride()
        assert ride.status == RideStatus.PENDING

    # ── Valid transitions ─────────────────────────────────────────

    def test_pending_to_accepted(self):
        ride = Ride(status=RideStatus.PENDING)
        assert ride.next_status(RideAction.ACCEPT, now=NOW, actor_id=7) == RideStatus.ACCEPTED

    def test_scheduled_accept_from_thirty_minutes_before(self):
        ride = Ride(status=RideStatus.SCHEDULED, scheduled_at=NOW + timedelta(minutes=30))
        assert ride.next_status(RideAction.ACCEPT, now=NOW, actor_id=7) == RideStatus.ACCEPTED

    def test_accepted_to_in_progress_by_owner(self):
        ride = Ride(status=RideStatus.ACCEPTED, driver_id=7)
        assert ride.next_status(RideAction.START, now=NOW, actor_id=7) == RideStatus.IN_PROGRESS

    def test_in_progress_to_completed(self):
        ride = Ride(status=RideStatus.IN_PROGRESS, driver_id=7)
        assert ride.next_status(RideAction.COMPLETE, now=NOW) == RideStatus.COMPLETED

    @pytest.mark.parametrize(
        "status", [RideStatus.PENDING, RideStatus.SCHEDULED, RideStatus.ACCEPTED]
    )
    def test_cancel_from_open_states(self, status):
        ride = Ride(status=status)
        assert ride.next_status(RideAction.CANCEL, now=NOW) == RideStatus.CANCELLED

    def test_no_show_after_grace(self):
        ride = Ride(status=RideStatus.SCHEDULED, scheduled_at=NOW - timedelta(minutes=11))
        assert ride.next_status(RideAction.NO_SHOW, now=NOW, actor_id=7) == RideStatus.NO_SHOW

    def test_sweep_stale_accepted(self):
        ride = Ride(
            status=RideStatus.ACCEPTED, driver_id=7, accepted_at=NOW - timedelta(minutes=16)
        )
        assert ride.next_status(RideAction.SWEEP, now=NOW) == RideStatus.CANCELLED

    # ── Invalid transitions ───────────────────────────────────────

    def test_pending_to_completed_fails(self):
        ride = Ride(status=RideStatus.PENDING)
        with pytest.raises(Conflict):
            ride.next_status(RideAction.COMPLETE, now=NOW)

    def test_in_progress_cannot_be_cancelled(self):
        ride = Ride(status=RideStatus.IN_PROGRESS, driver_id=7)
        with pytest.raises(Conflict):
            ride.next_status(RideAction.CANCEL, now=NOW)

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
    @pytest.mark.parametrize("action", list(RideAction))
    def test_terminal_states_are_final(self, status, action):
        ride = Ride(status=status, driver_id=7, scheduled_at=NOW - timedelta(hours=1))
        with pytest.raises(Conflict):
            ride.next_status(action, now=NOW, actor_id=7)

    def test_accept_assigned_ride_fails(self):
        ride = Ride(status=RideStatus.PENDING, driver_id=3)
        with pytest.raises(Conflict, match="already assigned"):
            ride.next_status(RideAction.ACCEPT, now=NOW, actor_id=7)

    def test_accept_already_accepted_uses_assignment_message(self):
        ride = Ride(status=RideStatus.ACCEPTED, driver_id=3)
        with pytest.raises(Conflict) as exc:
            ride.next_status(RideAction.ACCEPT, now=NOW, actor_id=7)
        assert exc.value.message == ALREADY_ASSIGNED

    def test_scheduled_accept_too_early(self):
        ride = Ride(status=RideStatus.SCHEDULED, scheduled_at=NOW + timedelta(minutes=31))
        with pytest.raises(Conflict, match="cannot be accepted yet"):
            ride.next_status(RideAction.ACCEPT, now=NOW, actor_id=7)

    def test_start_by_other_driver_fails(self):
        ride = Ride(status=RideStatus.ACCEPTED, driver_id=3)
        with pytest.raises(Conflict, match="not accepted by you"):
            ride.next_status(RideAction.START, now=NOW, actor_id=7)

    def test_no_show_within_grace_fails(self):
        ride = Ride(status=RideStatus.SCHEDULED, scheduled_at=NOW - timedelta(minutes=9))
        with pytest.raises(Conflict, match="grace period"):
            ride.next_status(RideAction.NO_SHOW, now=NOW, actor_id=7)

    def test_no_show_only_from_scheduled(self):
        ride = Ride(status=RideStatus.PENDING, scheduled_at=NOW - timedelta(hours=1))
        with pytest.raises(Conflict):
            ride.next_status(RideAction.NO_SHOW, now=NOW, actor_id=7)

    def test_sweep_fresh_ride_fails(self):
        ride = Ride(
            status=RideStatus.IN_PROGRESS, driver_id=7, started_at=NOW - timedelta(minutes=5)
        )
        with pytest.raises(Conflict, match="not stale"):
            ride.next_status(RideAction.SWEEP, now=NOW)


class TestTransitionTable:
    def test_terminal_states_have_no_outgoing_edges(self):
        assert not [src for (src, _) in RIDE_TRANSITIONS if src in TERMINAL_STATUSES]

    def test_accept_sources(self):
        assert sources_for(RideAction.ACCEPT) == {RideStatus.PENDING, RideStatus.SCHEDULED}

    def test_sweep_sources(self):
        assert sources_for(RideAction.SWEEP) == {RideStatus.ACCEPTED, RideStatus.IN_PROGRESS}

    def test_every_status_has_a_polling_label(self):
        assert set(STATUS_LABELS) == set(RideStatus)
        assert STATUS_LABELS[RideStatus.COMPLETED] == "done"


class TestRating:
    def test_completed_unrated_ride_is_rateable(self):
        Ride(status=RideStatus.COMPLETED).check_rateable(5)

    def test_rating_out_of_range(self):
        with pytest.raises(ValidationError):
            Ride(status=RideStatus.COMPLETED).check_rateable(6)

    def test_only_completed_rides(self):
        with pytest.raises(Conflict, match="Can only rate completed rides"):
            Ride(status=RideStatus.CANCELLED).check_rateable(4)

    def test_rate_once(self):
        with pytest.raises(Conflict, match="already rated"):
            Ride(status=RideStatus.COMPLETED, rating=3).check_rateable(4)


class TestDriverCompatibility:
    def test_car_serves_delivery(self):
        assert Driver(vehicle_type=ServiceKind.CAR).can_serve(ServiceKind.DELIVERY)

    def test_car_does_not_serve_limo(self):
        assert not Driver(vehicle_type=ServiceKind.CAR).can_serve(ServiceKind.LIMO)

    def test_other_kinds_serve_only_themselves(self):
        driver = Driver(vehicle_type=ServiceKind.CLEANING)
        assert driver.can_serve(ServiceKind.CLEANING)
        assert not driver.can_serve(ServiceKind.BEAUTY)

    def test_driver_without_vehicle_serves_nothing(self):
        assert not Driver(vehicle_type=None).can_serve(ServiceKind.CAR)

    def test_kind_parsing_is_case_insensitive(self):
        assert ServiceKind.parse(" tuktuk ") == ServiceKind.TUKTUK
        assert ServiceKind.parse("hovercraft") is None
        assert ServiceKind.parse(None) is None
