"""
Unit tests for ride status state machine validations.
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from rideflow.errors import InvalidTransition
from rideflow.schemas.schemas import RideStatusEnum
from rideflow.services.state_machine import (
    ASSIGNED,
    TERMINAL,
    TRANSITIONS,
    UNASSIGNED,
    check_transition,
    is_terminal,
    is_valid_transition,
    next_timestamp,
)


class TestRideStateMachine:
    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == {s.value for s in RideStatusEnum}

    def test_superstates_partition_statuses(self):
        assert UNASSIGNED | ASSIGNED | TERMINAL == set(TRANSITIONS)
        assert not (UNASSIGNED & ASSIGNED)
        assert not (ASSIGNED & TERMINAL)

    def test_happy_path(self):
        path = ["pending", "accepted", "arrived", "picked_up", "in_progress", "completed"]
        for current, target in zip(path, path[1:]):
            assert is_valid_transition(current, target)

    def test_unassigned_statuses_move_between_each_other(self):
        assert is_valid_transition("pending", "searching")
        assert is_valid_transition("searching", "awaiting_driver_confirmation")
        assert is_valid_transition("awaiting_driver_confirmation", "searching")

    def test_every_unassigned_status_can_be_accepted(self):
        for status in UNASSIGNED:
            assert is_valid_transition(status, "accepted")

    def test_every_non_terminal_status_can_cancel(self):
        for status in UNASSIGNED | ASSIGNED:
            assert is_valid_transition(status, "cancelled")

    def test_no_skipping_steps(self):
        assert not is_valid_transition("accepted", "picked_up")
        assert not is_valid_transition("arrived", "in_progress")
        assert not is_valid_transition("pending", "completed")

    def test_no_going_back(self):
        assert not is_valid_transition("in_progress", "arrived")
        assert not is_valid_transition("accepted", "pending")

    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL:
            assert is_terminal(status)
            assert TRANSITIONS[status] == frozenset()

    def test_accepts_enum_members(self):
        assert is_valid_transition(RideStatusEnum.accepted, RideStatusEnum.arrived)
        assert is_terminal(RideStatusEnum.completed)


class TestCheckTransition:
    def test_legal_move_applies(self):
        assert check_transition("accepted", "arrived") is True

    def test_illegal_move_raises(self):
        with pytest.raises(InvalidTransition):
            check_transition("accepted", "completed")

    def test_repeating_terminal_status_is_a_no_op(self):
        assert check_transition("completed", "completed") is False
        assert check_transition("cancelled", "cancelled") is False

    def test_cancel_after_complete_raises(self):
        with pytest.raises(InvalidTransition):
            check_transition("completed", "cancelled")

    def test_repeating_non_terminal_status_raises(self):
        with pytest.raises(InvalidTransition):
            check_transition("arrived", "arrived")


class TestNextTimestamp:
    def test_uses_now_when_history_is_older(self):
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        ride = SimpleNamespace(requested_at=now - timedelta(minutes=5), accepted_at=None)
        assert next_timestamp(ride, now=now) == now

    def test_never_precedes_an_existing_timestamp(self):
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        later = now + timedelta(seconds=30)
        ride = SimpleNamespace(requested_at=now, accepted_at=later)
        assert next_timestamp(ride, now=now) == later

    def test_naive_values_are_treated_as_utc(self):
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        ride = SimpleNamespace(requested_at=datetime(2024, 1, 1, 13, 0))
        assert next_timestamp(ride, now=now) == datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc)
