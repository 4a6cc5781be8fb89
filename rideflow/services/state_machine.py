"""
Ride status transition table.

pending / searching / awaiting_driver_confirmation form one "unassigned"
superstate; they differ only for observability. Assignment is the sole way
out of it (other than cancellation), and every status may move to
``cancelled`` until it is terminal.
"""
from datetime import datetime, timezone

from rideflow.errors import InvalidTransition
from rideflow.schemas.schemas import RideStatusEnum as S


def _values(*statuses: S) -> frozenset[str]:
    return frozenset(s.value for s in statuses)


UNASSIGNED = _values(S.pending, S.searching, S.awaiting_driver_confirmation)
ASSIGNED = _values(S.accepted, S.arrived, S.picked_up, S.in_progress)
TERMINAL = _values(S.completed, S.cancelled)

TRANSITIONS: dict[str, frozenset[str]] = {
    S.pending.value: _values(S.searching, S.awaiting_driver_confirmation, S.accepted, S.cancelled),
    S.searching.value: _values(S.awaiting_driver_confirmation, S.accepted, S.cancelled),
    S.awaiting_driver_confirmation.value: _values(S.searching, S.accepted, S.cancelled),
    S.accepted.value: _values(S.arrived, S.cancelled),
    S.arrived.value: _values(S.picked_up, S.cancelled),
    S.picked_up.value: _values(S.in_progress, S.cancelled),
    S.in_progress.value: _values(S.completed, S.cancelled),
    S.completed.value: frozenset(),
    S.cancelled.value: frozenset(),
}

# Column stamped when a ride enters the status
TIMESTAMP_FOR: dict[str, str] = {
    S.accepted.value: "accepted_at",
    S.arrived.value: "arrived_at",
    S.picked_up.value: "picked_up_at",
    S.in_progress.value: "started_at",
    S.completed.value: "completed_at",
    S.cancelled.value: "cancelled_at",
}


def status_value(status) -> str:
    return getattr(status, "value", status)


def is_terminal(status) -> bool:
    return status_value(status) in TERMINAL


def is_valid_transition(current, target) -> bool:
    return status_value(target) in TRANSITIONS.get(status_value(current), frozenset())


def check_transition(current, target) -> bool:
    """
    Validate ``current -> target``.

    Returns True when the move should be applied and False for a repeat of
    the terminal status the ride is already in (at-least-once callers).
    Raises InvalidTransition for anything else.
    """
    current, target = status_value(current), status_value(target)
    if current in TERMINAL and current == target:
        return False
    if not is_valid_transition(current, target):
        raise InvalidTransition(f"Cannot move ride from {current} to {target}")
    return True


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def next_timestamp(ride, now: datetime | None = None) -> datetime:
    """`now`, clamped so it never precedes a timestamp the ride already has."""
    stamp = _aware(now or datetime.now(timezone.utc))
    for field in ("requested_at", *TIMESTAMP_FOR.values()):
        existing = getattr(ride, field, None)
        if existing is not None and _aware(existing) > stamp:
            stamp = _aware(existing)
    return stamp
