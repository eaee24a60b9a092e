"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    SEARCHING = "searching"
    COUNTER_OFFERED = "counter-offered"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SEARCHING: {
        RideStatus.COUNTER_OFFERED,
        RideStatus.ACCEPTED,
        RideStatus.CANCELLED,
    },
    RideStatus.COUNTER_OFFERED: {
        RideStatus.SEARCHING,
        RideStatus.ACCEPTED,
        RideStatus.CANCELLED,
    },
    RideStatus.ACCEPTED: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})


class ServiceType(str, enum.Enum):
    ECONOMY = "economy"
    COMFORT = "comfort"
    EXCLUSIVE = "exclusive"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    YAPE = "yape"
    PLIN = "plin"


class DriverStatus(str, enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    ON_RIDE = "on-ride"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DISABLED = "disabled"


class CancelActor(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    SYSTEM = "system"


class NegotiationStatus(str, enum.Enum):
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    COUNTER_OFFERED = "counter-offered"
    REJECTED = "rejected"


class OfferDecision(str, enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"
