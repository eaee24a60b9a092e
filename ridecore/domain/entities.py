"""
Domain value objects.

Everything here is immutable: a quote is computed from ``TripFacts`` and a
``PricingConfig`` snapshot and yields a ``FareBreakdown`` that is never
edited afterwards.  Mutable ride state lives in the ``rides`` table and is
only changed through the guarded updates in ``RideRepository``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from .enums import CouponStatus, DiscountType, DriverStatus, ServiceType
from .errors import ValidationError


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class TripFacts:
    distance_km: float
    duration_minutes: float
    service_type: ServiceType | str
    ride_timestamp: datetime
    coupon_code: Optional[str] = None

    def __post_init__(self) -> None:
        if self.distance_km < 0:
            raise ValidationError(f"distance_km must be >= 0, got {self.distance_km}")
        if self.duration_minutes < 0:
            raise ValidationError(
                f"duration_minutes must be >= 0, got {self.duration_minutes}"
            )


@dataclass(frozen=True)
class SpecialFareRule:
    """Date-range surcharge (holidays, events).  Both ends inclusive."""

    name: str
    start_date: date
    end_date: date
    surcharge_percent: float

    def contains(self, moment: datetime) -> bool:
        return self.start_date <= moment.date() <= self.end_date


@dataclass(frozen=True)
class PeakTimeRule:
    """Time-of-day surcharge; ``start_time`` / ``end_time`` are ``HH:mm``."""

    name: str
    start_time: str
    end_time: str
    surcharge_percent: float


@dataclass(frozen=True)
class PricingConfig:
    base_fare: float
    per_km_fare: float
    per_minute_fare: float
    service_multipliers: dict[str, float]
    special_fare_rules: tuple[SpecialFareRule, ...] = ()
    peak_time_rules: tuple[PeakTimeRule, ...] = ()
    negotiation_range_percent: float = 15.0
    source: str = "database"

    def __post_init__(self) -> None:
        for name in ("base_fare", "per_km_fare", "per_minute_fare"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} must be >= 0")
        if any(m < 0 for m in self.service_multipliers.values()):
            raise ValidationError("service multipliers must be >= 0")
        if not 0 <= self.negotiation_range_percent < 100:
            raise ValidationError("negotiation_range_percent must be in [0, 100)")


@dataclass(frozen=True)
class Coupon:
    code: str
    discount_type: DiscountType
    value: float
    expiry_date: datetime
    status: CouponStatus = CouponStatus.ACTIVE
    min_spend: Optional[float] = None
    usage_limit: Optional[int] = None
    times_used: int = 0


@dataclass(frozen=True)
class FareBreakdown:
    """
    Itemised quote.  Amounts are rounded to cents for display; ``total`` is
    grid-aligned and equals the normalized sum of the items minus the
    coupon discount.
    """

    base_fare: float
    distance_cost: float
    duration_cost: float
    service_multiplier: float
    service_cost: float
    peak_surcharge: float
    special_day_surcharge: float
    coupon_discount: float
    subtotal: float
    fare_before_discount: float
    total: float
    coupon_code: Optional[str] = None
    coupon_reason: Optional[str] = None
    special_rule_name: Optional[str] = None
    is_peak: bool = False
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "base_fare": self.base_fare,
            "distance_cost": self.distance_cost,
            "duration_cost": self.duration_cost,
            "service_multiplier": self.service_multiplier,
            "service_cost": self.service_cost,
            "peak_surcharge": self.peak_surcharge,
            "special_day_surcharge": self.special_day_surcharge,
            "coupon_discount": self.coupon_discount,
            "subtotal": self.subtotal,
            "fare_before_discount": self.fare_before_discount,
            "total": self.total,
            "coupon_code": self.coupon_code,
            "coupon_reason": self.coupon_reason,
            "special_rule_name": self.special_rule_name,
            "is_peak": self.is_peak,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class CandidateDriver:
    """Snapshot of a driver row; location may be stale by a few seconds."""

    id: int
    service_type: ServiceType
    status: DriverStatus
    lat: float
    lng: float
