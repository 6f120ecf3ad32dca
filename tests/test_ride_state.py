"""Unit tests for ride entity state transitions (State Pattern)."""

import itertools

import pytest

from ride_service.domain.entities import Ride
from ride_service.domain.enums import RIDE_TRANSITIONS, RideStatus
from ride_service.domain.errors import InvalidTransitionError

FORWARD = [
    RideStatus.REQUESTED,
    RideStatus.ACCEPTED,
    RideStatus.DRIVER_EN_ROUTE,
    RideStatus.STARTED,
    RideStatus.IN_PROGRESS,
    RideStatus.COMPLETED,
]
NON_TERMINAL = FORWARD[:-1]


class TestRideStateMachine:
    def test_initial_status_is_requested(self):
        ride = Ride()
        assert ride.status == RideStatus.REQUESTED

    def test_every_status_has_a_rule(self):
        assert set(RIDE_TRANSITIONS) == set(RideStatus)

    def test_terminal_statuses(self):
        terminal = {s for s in RideStatus if s.is_terminal}
        assert terminal == {RideStatus.COMPLETED, RideStatus.CANCELLED}

    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize("current,nxt", list(zip(FORWARD, FORWARD[1:])))
    def test_forward_step(self, current, nxt):
        ride = Ride(status=current)
        ride.transition_to(nxt)
        assert ride.status == nxt

    @pytest.mark.parametrize("current", NON_TERMINAL)
    def test_cancel_from_non_terminal(self, current):
        ride = Ride(status=current)
        ride.transition_to(RideStatus.CANCELLED)
        assert ride.status == RideStatus.CANCELLED
        assert ride.cancelled_at is not None

    def test_transition_stamps_timestamp(self):
        ride = Ride(status=RideStatus.DRIVER_EN_ROUTE)
        ride.transition_to(RideStatus.STARTED)
        assert ride.started_at is not None
        assert ride.completed_at is None

    # ── Invalid transitions ───────────────────────────────────────

    def test_requested_to_started_fails(self):
        ride = Ride(status=RideStatus.REQUESTED)
        with pytest.raises(InvalidTransitionError):
            ride.transition_to(RideStatus.STARTED)

    @pytest.mark.parametrize("terminal", [RideStatus.COMPLETED, RideStatus.CANCELLED])
    def test_terminal_to_anything_fails(self, terminal):
        for target in RideStatus:
            ride = Ride(status=terminal)
            with pytest.raises(InvalidTransitionError):
                ride.transition_to(target)

    def test_only_graph_edges_allowed(self):
        """Exhaustive: anything not one step forward or a cancel is refused."""
        for current, target in itertools.product(RideStatus, RideStatus):
            ride = Ride(status=current)
            allowed = target in RIDE_TRANSITIONS[current]
            assert ride.can_transition_to(target) is allowed
            if not allowed:
                with pytest.raises(InvalidTransitionError):
                    ride.transition_to(target)
                assert ride.status == current
