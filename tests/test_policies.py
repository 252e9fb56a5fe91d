"""Unit tests for time-window policies and the sweep planner."""

from datetime import datetime, timedelta, timezone

import pytest

from dispatch.domain import policies
from dispatch.domain.entities import Ride
from dispatch.domain.enums import RideStatus, ServiceKind
from dispatch.domain.policies import (
    CANCELLATION_RULES,
    REASON_AUTO_CANCEL,
    REASON_STUCK,
    REASON_UNACCEPTED,
    TimeWindows,
    plan_sweep,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def minutes(n: int) -> timedelta:
    return timedelta(minutes=n)


class TestVisibilityWindows:
    def test_scheduled_visible_at_lead_edge(self):
        assert policies.scheduled_visible(NOW + minutes(30), NOW)

    def test_scheduled_hidden_before_lead(self):
        assert not policies.scheduled_visible(NOW + minutes(45), NOW)

    def test_scheduled_visible_until_tail(self):
        assert policies.scheduled_visible(NOW - minutes(60), NOW)
        assert not policies.scheduled_visible(NOW - minutes(61), NOW)

    def test_pending_visibility_window(self):
        assert policies.pending_visible(NOW - minutes(59), NOW)
        assert not policies.pending_visible(NOW - minutes(61), NOW)

    def test_immediate_ride_always_acceptable(self):
        assert policies.scheduled_acceptable(None, NOW)

    def test_custom_windows(self):
        windows = TimeWindows(schedule_lead=minutes(60))
        assert policies.scheduled_acceptable(NOW + minutes(45), NOW, windows)


class TestNoShowGrace:
    def test_exactly_at_grace_is_allowed(self):
        assert policies.no_show_allowed(NOW - minutes(10), NOW)

    def test_inside_grace_is_refused(self):
        assert not policies.no_show_allowed(NOW - minutes(9), NOW)

    def test_requires_a_schedule(self):
        assert not policies.no_show_allowed(None, NOW)


class TestCancellationRules:
    def test_table_values(self):
        assert CANCELLATION_RULES["TRANSPORTATION"] == 2
        assert CANCELLATION_RULES["SHOPPING"] == 3
        assert CANCELLATION_RULES["CLEANING"] == 48
        assert CANCELLATION_RULES["TUTOR"] == 72

    def test_category_name_takes_precedence(self):
        ride = Ride(service_kind=ServiceKind.CAR, category_name=" cleaning ")
        assert policies.max_open_hours(ride) == 48

    def test_kind_category_used_without_name(self):
        assert policies.max_open_hours(Ride(service_kind=ServiceKind.DELIVERY)) == 3

    def test_unknown_category_defaults_to_48(self):
        assert policies.max_open_hours(Ride(category_name="ASTROLOGY")) == 48

    def test_reference_time_prefers_schedule_while_unassigned(self):
        ride = Ride(
            status=RideStatus.SCHEDULED,
            requested_at=NOW - timedelta(days=2),
            scheduled_at=NOW + timedelta(hours=1),
        )
        assert policies.reference_time(ride) == NOW + timedelta(hours=1)

    def test_reference_time_uses_request_once_accepted(self):
        ride = Ride(
            status=RideStatus.ACCEPTED,
            requested_at=NOW - timedelta(hours=1),
            scheduled_at=NOW + timedelta(hours=1),
        )
        assert policies.reference_time(ride) == NOW - timedelta(hours=1)


class TestPlanSweep:
    def test_stuck_accepted_ride(self):
        ride = Ride(
            id=1, status=RideStatus.ACCEPTED, driver_id=4, accepted_at=NOW - minutes(16)
        )
        plan = plan_sweep([ride], NOW)
        assert len(plan) == 1
        assert plan[0].reason == REASON_STUCK
        assert plan[0].driver_id == 4
        assert plan[0].to_status == RideStatus.CANCELLED

    def test_stuck_in_progress_uses_started_at(self):
        ride = Ride(
            id=1,
            status=RideStatus.IN_PROGRESS,
            accepted_at=NOW - minutes(40),
            started_at=NOW - minutes(5),
        )
        assert plan_sweep([ride], NOW) == []

    def test_auto_cancel_transportation_after_two_hours(self):
        ride = Ride(
            id=2,
            status=RideStatus.PENDING,
            service_kind=ServiceKind.CAR,
            requested_at=NOW - timedelta(hours=2, minutes=1),
        )
        plan = plan_sweep([ride], NOW)
        assert [t.reason for t in plan] == [REASON_AUTO_CANCEL]

    def test_auto_cancel_not_before_deadline(self):
        ride = Ride(
            id=2,
            status=RideStatus.PENDING,
            category_name="CLEANING",
            requested_at=NOW - timedelta(hours=47),
        )
        assert plan_sweep([ride], NOW, stuck=False) == []

    def test_stuck_wins_over_category(self):
        ride = Ride(
            id=3,
            status=RideStatus.ACCEPTED,
            requested_at=NOW - timedelta(hours=5),
            accepted_at=NOW - minutes(20),
        )
        plan = plan_sweep([ride], NOW)
        assert len(plan) == 1
        assert plan[0].reason == REASON_STUCK

    def test_stuck_only_mode(self):
        ride = Ride(
            id=2, status=RideStatus.PENDING, requested_at=NOW - timedelta(hours=5)
        )
        plan = plan_sweep([ride], NOW, category=False)
        assert [t.reason for t in plan] == [REASON_UNACCEPTED]

    def test_category_only_mode(self):
        ride = Ride(id=1, status=RideStatus.ACCEPTED, accepted_at=NOW - minutes(20),
                    requested_at=NOW - minutes(25))
        assert plan_sweep([ride], NOW, stuck=False) == []

    def test_unaccepted_pending_after_an_hour(self):
        ride = Ride(
            id=6,
            status=RideStatus.PENDING,
            category_name="CLEANING",
            requested_at=NOW - minutes(61),
        )
        plan = plan_sweep([ride], NOW)
        assert [(t.reason, t.driver_id) for t in plan] == [(REASON_UNACCEPTED, None)]

    def test_pending_inside_the_hour_is_kept(self):
        ride = Ride(id=6, status=RideStatus.PENDING, requested_at=NOW - minutes(60))
        assert plan_sweep([ride], NOW) == []

    def test_unaccepted_scheduled_measured_from_schedule(self):
        ride = Ride(
            id=7,
            status=RideStatus.SCHEDULED,
            category_name="CLEANING",
            requested_at=NOW - timedelta(days=2),
            scheduled_at=NOW - minutes(59),
        )
        assert plan_sweep([ride], NOW) == []
        plan = plan_sweep([ride], NOW + minutes(2))
        assert [t.reason for t in plan] == [REASON_UNACCEPTED]

    def test_assigned_ride_is_never_unaccepted(self):
        ride = Ride(
            id=8,
            status=RideStatus.PENDING,
            driver_id=4,
            category_name="CLEANING",
            requested_at=NOW - timedelta(hours=5),
        )
        assert not policies.is_unaccepted(ride, NOW)

    @pytest.mark.parametrize(
        "status", [RideStatus.COMPLETED, RideStatus.CANCELLED, RideStatus.NO_SHOW]
    )
    def test_terminal_rides_are_ignored(self, status):
        ride = Ride(
            id=5,
            status=status,
            requested_at=NOW - timedelta(days=10),
            accepted_at=NOW - timedelta(days=10),
        )
        assert plan_sweep([ride], NOW) == []

    def test_replanning_after_applying_is_empty(self):
        rides = [
            Ride(id=1, status=RideStatus.ACCEPTED, accepted_at=NOW - minutes(16)),
            Ride(id=2, status=RideStatus.PENDING, requested_at=NOW - timedelta(hours=3)),
        ]
        plan = plan_sweep(rides, NOW)
        assert {t.ride_id for t in plan} == {1, 2}

        by_id = {t.ride_id: t for t in plan}
        for ride in rides:
            ride.status = by_id[ride.id].to_status
        assert plan_sweep(rides, NOW) == []
