"""
Ride lifecycle rules  (State Pattern)
=====================================

    searching ──► counter-offered ──► accepted ──► arrived ──► in-progress ──► completed
        ▲               │
        └───────────────┘  (passenger rejects the counter-offer)

    cancelled is reachable from every non-terminal state except in-progress.

Who may do what
---------------
* ``searching -> accepted`` only through the assignment coordinator's claim.
* ``accepted -> arrived -> in-progress -> completed``: the assigned driver.
* Cancel: passenger while searching / counter-offered / accepted / arrived;
  driver while accepted / arrived.  A reason code is always required.

These functions only *check*; the guarded update itself is executed by
``RideRepository`` so that the check and the write are a single statement.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .enums import RIDE_TRANSITIONS, TERMINAL_STATUSES, CancelActor, RideStatus
from .errors import InvalidTransition, ValidationError

# next status -> status it must come from
DRIVER_ADVANCES: dict[RideStatus, RideStatus] = {
    RideStatus.ARRIVED: RideStatus.ACCEPTED,
    RideStatus.IN_PROGRESS: RideStatus.ARRIVED,
    RideStatus.COMPLETED: RideStatus.IN_PROGRESS,
}

PASSENGER_CANCELLABLE = frozenset(
    {
        RideStatus.SEARCHING,
        RideStatus.COUNTER_OFFERED,
        RideStatus.ACCEPTED,
        RideStatus.ARRIVED,
    }
)
DRIVER_CANCELLABLE = frozenset({RideStatus.ACCEPTED, RideStatus.ARRIVED})
SYSTEM_CANCELLABLE = PASSENGER_CANCELLABLE

# Cancelling from these releases the assigned driver back to available.
DRIVER_HOLDING_STATUSES = frozenset({RideStatus.ACCEPTED, RideStatus.ARRIVED})

_CANCELLABLE_BY = {
    CancelActor.PASSENGER: PASSENGER_CANCELLABLE,
    CancelActor.DRIVER: DRIVER_CANCELLABLE,
    CancelActor.SYSTEM: SYSTEM_CANCELLABLE,
}


def can_transition(current: RideStatus, new: RideStatus) -> bool:
    return new in RIDE_TRANSITIONS.get(current, set())


def check_transition(current: RideStatus, new: RideStatus) -> None:
    if not can_transition(current, new):
        raise InvalidTransition(f"Cannot transition from {current.value} to {new.value}")


def check_advance(
    current: RideStatus,
    new: RideStatus,
    assigned_driver_id: Optional[int],
    driver_id: int,
) -> RideStatus:
    """Validate a driver-initiated step; return the status it must come from."""
    expected = DRIVER_ADVANCES.get(new)
    if expected is None:
        raise InvalidTransition(f"Drivers cannot move a ride to {new.value}")
    if assigned_driver_id is None or assigned_driver_id != driver_id:
        raise InvalidTransition("Only the assigned driver can advance this ride")
    if current != expected:
        raise InvalidTransition(
            f"Cannot move to {new.value} from {current.value} "
            f"(expected {expected.value})"
        )
    check_transition(current, new)
    return expected


def check_cancel(
    current: RideStatus,
    actor: CancelActor,
    reason_code: Optional[str],
    allowed_reasons: Iterable[str],
    assigned_driver_id: Optional[int] = None,
    actor_id: Optional[int] = None,
) -> None:
    if not reason_code:
        raise ValidationError("A cancellation reason code is required")
    if reason_code not in set(allowed_reasons):
        raise ValidationError(f"Unknown cancellation reason code {reason_code!r}")
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(f"Ride is already {current.value}")
    if current not in _CANCELLABLE_BY[actor]:
        raise InvalidTransition(f"A {actor.value} cannot cancel a ride that is {current.value}")
    if actor == CancelActor.DRIVER and (
        assigned_driver_id is None or assigned_driver_id != actor_id
    ):
        raise InvalidTransition("Only the assigned driver can cancel this ride")
    check_transition(current, RideStatus.CANCELLED)


def releases_driver(status: RideStatus) -> bool:
    return status in DRIVER_HOLDING_STATUSES
