"""
Fare Pricing Engine
===================

Formula
-------
base_cost  = base_fare + distance_km x per_km_fare + duration_min x per_minute_fare
subtotal   = base_cost x service_multiplier                  (service_cost = base_cost x (m - 1))
subtotal  += subtotal x special_rule.surcharge%              (first matching date rule)
total      = subtotal + subtotal x peak_rule.surcharge%      (first matching time rule)
total     -= coupon discount                                 (clamped, never negative)
total      = normalize(total)                                (0.50 grid)

Everything is accumulated at full float precision; only the display fields
of ``FareBreakdown`` are rounded to cents.

Bad configuration never aborts a quote: an unknown service type prices at
multiplier 1.0 and a malformed rule is skipped.  Both are logged and
reported in ``FareBreakdown.warnings``.

Complexity: O(R) per quote, R = number of configured rules.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from .coupons import evaluate_coupon
from .entities import (
    Coupon,
    FareBreakdown,
    PeakTimeRule,
    PricingConfig,
    SpecialFareRule,
    TripFacts,
)
from .errors import ConfigurationError
from .normalizer import DEFAULT_GRID_STEP, normalize_price, round_money

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


# ── Rule matching ─────────────────────────────────────────────────────


def parse_clock(value: str) -> int:
    """``"HH:mm"`` -> minutes since midnight.  Raises ``ConfigurationError``."""
    try:
        hours_s, minutes_s = value.strip().split(":")
        hours, minutes = int(hours_s), int(minutes_s)
    except (AttributeError, ValueError) as exc:
        raise ConfigurationError(f"Malformed time {value!r}, expected HH:mm") from exc
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ConfigurationError(f"Time {value!r} out of range")
    return hours * 60 + minutes


def in_time_window(minute_of_day: int, start: int, end: int) -> bool:
    """Inclusive window check that wraps past midnight (e.g. 23:00-05:00)."""
    span = (end - start) % MINUTES_PER_DAY
    offset = (minute_of_day - start) % MINUTES_PER_DAY
    return offset <= span


def match_special_rule(
    rules: Sequence[SpecialFareRule], moment: datetime
) -> Optional[SpecialFareRule]:
    """First rule (declaration order) whose date range contains *moment*."""
    for rule in rules:
        if rule.contains(moment):
            return rule
    return None


def match_peak_rule(
    rules: Sequence[PeakTimeRule],
    moment: datetime,
    warnings: Optional[list[str]] = None,
) -> Optional[PeakTimeRule]:
    """First well-formed rule whose window contains *moment*'s time of day."""
    minute_of_day = moment.hour * 60 + moment.minute
    for rule in rules:
        try:
            start = parse_clock(rule.start_time)
            end = parse_clock(rule.end_time)
        except ConfigurationError as exc:
            logger.warning("Skipping peak rule %r: %s", rule.name, exc)
            if warnings is not None:
                warnings.append(f"peak rule {rule.name!r} skipped: {exc}")
            continue
        if in_time_window(minute_of_day, start, end):
            return rule
    return None


# ── Calculator ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RawFare:
    """Full-precision intermediate result, before coupon and normalisation."""

    base_fare: float
    distance_cost: float
    duration_cost: float
    service_multiplier: float
    service_cost: float
    special_day_surcharge: float
    peak_surcharge: float
    subtotal: float
    total: float
    special_rule_name: Optional[str]
    is_peak: bool
    warnings: tuple[str, ...]


class FareCalculator:
    """Pure function of ``TripFacts`` and ``PricingConfig``.  No I/O."""

    def __init__(self, timezone: Optional[str] = None):
        self.timezone = ZoneInfo(timezone) if timezone else None

    def local_time(self, moment: datetime) -> datetime:
        if moment.tzinfo is not None and self.timezone is not None:
            return moment.astimezone(self.timezone)
        return moment

    def compute(self, trip: TripFacts, config: PricingConfig) -> RawFare:
        warnings: list[str] = []

        distance_cost = trip.distance_km * config.per_km_fare
        duration_cost = trip.duration_minutes * config.per_minute_fare
        base_cost = config.base_fare + distance_cost + duration_cost

        service_key = getattr(trip.service_type, "value", trip.service_type)
        multiplier = config.service_multipliers.get(service_key)
        if multiplier is None:
            logger.warning(
                "No multiplier configured for service type %r; pricing at 1.0",
                service_key,
            )
            warnings.append(f"unknown service type {service_key!r}, multiplier 1.0 used")
            multiplier = 1.0

        service_cost = base_cost * (multiplier - 1)
        subtotal = base_cost + service_cost

        moment = self.local_time(trip.ride_timestamp)

        special = match_special_rule(config.special_fare_rules, moment)
        special_surcharge = subtotal * special.surcharge_percent / 100 if special else 0.0
        subtotal += special_surcharge

        peak = match_peak_rule(config.peak_time_rules, moment, warnings)
        peak_surcharge = subtotal * peak.surcharge_percent / 100 if peak else 0.0

        return RawFare(
            base_fare=config.base_fare,
            distance_cost=distance_cost,
            duration_cost=duration_cost,
            service_multiplier=multiplier,
            service_cost=service_cost,
            special_day_surcharge=special_surcharge,
            peak_surcharge=peak_surcharge,
            subtotal=subtotal,
            total=subtotal + peak_surcharge,
            special_rule_name=special.name if special else None,
            is_peak=peak is not None,
            warnings=tuple(warnings),
        )


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the quote service and the booking flow."""

    def __init__(
        self,
        grid_step: float = DEFAULT_GRID_STEP,
        timezone: Optional[str] = None,
    ):
        self.grid_step = grid_step
        self.calculator = FareCalculator(timezone)

    def normalize(self, amount: float) -> float:
        return normalize_price(amount, self.grid_step)

    def quote(
        self,
        trip: TripFacts,
        config: PricingConfig,
        coupon: Optional[Coupon] = None,
        now: Optional[datetime] = None,
    ) -> FareBreakdown:
        raw = self.calculator.compute(trip, config)
        before_discount = self.normalize(raw.total)

        coupon_result = evaluate_coupon(
            trip.coupon_code, coupon, raw.total, now or trip.ride_timestamp
        )
        total = self.normalize(max(0.0, raw.total - coupon_result.discount))

        return FareBreakdown(
            base_fare=round_money(raw.base_fare),
            distance_cost=round_money(raw.distance_cost),
            duration_cost=round_money(raw.duration_cost),
            service_multiplier=raw.service_multiplier,
            service_cost=round_money(raw.service_cost),
            peak_surcharge=round_money(raw.peak_surcharge),
            special_day_surcharge=round_money(raw.special_day_surcharge),
            coupon_discount=round_money(coupon_result.discount),
            subtotal=round_money(raw.subtotal),
            fare_before_discount=before_discount,
            total=total,
            coupon_code=trip.coupon_code if coupon_result.applied else None,
            coupon_reason=coupon_result.reason,
            special_rule_name=raw.special_rule_name,
            is_peak=raw.is_peak,
            warnings=raw.warnings,
        )

    def without_coupon(self, breakdown: FareBreakdown, reason: str) -> FareBreakdown:
        """Same quote with the coupon dropped (used when usage could not be consumed)."""
        return dataclasses.replace(
            breakdown,
            coupon_discount=0.0,
            total=breakdown.fare_before_discount,
            coupon_code=None,
            coupon_reason=reason,
        )
