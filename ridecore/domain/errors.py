"""
Error taxonomy shared by the domain and service layers.

Pure calculators only raise ``ValidationError`` (impossible numeric input).
The coordinator and the lifecycle service convert ``AssignmentConflict``,
``NoDriversAvailable`` and ``InvalidTransition`` into structured results,
because races between sessions are expected rather than exceptional.
"""


class RideCoreError(Exception):
    """Base class for every error raised by ``ridecore``."""

    code = "error"


class ConfigurationError(RideCoreError):
    """Pricing configuration is unusable; callers degrade to a safe default."""

    code = "configuration_error"


class ValidationError(RideCoreError):
    """Input is impossible or outside the allowed band; nothing was mutated."""

    code = "validation_error"


class CouponError(RideCoreError):
    """A coupon cannot be applied.  ``reason`` is machine-readable."""

    code = "coupon_not_applied"

    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    DISABLED = "disabled"
    BELOW_MIN_SPEND = "below_min_spend"
    USAGE_LIMIT_REACHED = "usage_limit_reached"

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


class AssignmentConflict(RideCoreError):
    """Lost a compare-and-set race: the ride is no longer available."""

    code = "ride_unavailable"


class NoDriversAvailable(RideCoreError):
    """Every eligible candidate declined, timed out or is busy."""

    code = "no_drivers_available"


class InvalidTransition(RideCoreError):
    """A lifecycle guard rejected the change; the ride is untouched."""

    code = "invalid_transition"
