"""Structured outcomes returned by the ride operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ridecore.domain.errors import RideCoreError
from ridecore.infrastructure.models import RideModel

RIDE_NOT_FOUND = "ride_not_found"


@dataclass
class RideResult:
    """Result object for ride operations."""

    success: bool
    ride: Optional[RideModel] = None
    message: str = ""
    error_code: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, ride: Optional[RideModel], message: str = "", **extra: Any) -> "RideResult":
        return cls(success=True, ride=ride, message=message, extra=extra)

    @classmethod
    def fail(
        cls, error: RideCoreError, ride: Optional[RideModel] = None, **extra: Any
    ) -> "RideResult":
        return cls(
            success=False,
            ride=ride,
            message=str(error),
            error_code=error.code,
            extra=extra,
        )

    @classmethod
    def not_found(cls, ride_id: int) -> "RideResult":
        return cls(
            success=False, message=f"Ride {ride_id} not found", error_code=RIDE_NOT_FOUND
        )
