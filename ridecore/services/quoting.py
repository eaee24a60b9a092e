"""Fare quotes: pure with respect to rides and coupon usage."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.config import Settings
from ridecore.domain.coupons import apply_discount
from ridecore.domain.entities import FareBreakdown, PricingConfig, TripFacts
from ridecore.domain.enums import DiscountType
from ridecore.domain.pricing import PricingEngine
from ridecore.infrastructure.models import RideModel
from ridecore.infrastructure.pricing_provider import load_pricing_config
from ridecore.infrastructure.repositories import CouponRepository

logger = logging.getLogger(__name__)


def build_pricing_engine(settings: Settings) -> PricingEngine:
    return PricingEngine(
        grid_step=settings.price_grid_step, timezone=settings.service_timezone
    )


def fare_after_coupon(engine: PricingEngine, ride: RideModel, agreed_fare: float) -> float:
    """Re-apply the ride's coupon snapshot to a negotiated amount, on the grid."""
    if ride.coupon_discount_type is None or ride.coupon_value is None:
        return engine.normalize(agreed_fare)
    discount = apply_discount(
        DiscountType(ride.coupon_discount_type), ride.coupon_value, agreed_fare
    )
    return engine.normalize(max(0.0, agreed_fare - discount))


class QuoteService:
    def __init__(self, session: AsyncSession, settings: Settings):
        self.session = session
        self.settings = settings
        self.engine = build_pricing_engine(settings)

    async def pricing_config(self) -> PricingConfig:
        return await load_pricing_config(self.session, self.settings)

    async def quote_fare(
        self,
        trip: TripFacts,
        now: datetime,
        config: Optional[PricingConfig] = None,
    ) -> FareBreakdown:
        """Itemised fare for *trip*; never consumes a coupon use."""
        config = config or await self.pricing_config()
        coupon = None
        if trip.coupon_code:
            coupon = await CouponRepository(self.session).get_by_code(trip.coupon_code)
        breakdown = self.engine.quote(trip, config, coupon, now)
        logger.debug(
            "Quote %s %.1f km / %.0f min -> %.2f (config=%s)",
            getattr(trip.service_type, "value", trip.service_type),
            trip.distance_km,
            trip.duration_minutes,
            breakdown.total,
            config.source,
        )
        return breakdown
