"""
Pricing configuration provider.

Reads the ``main`` tariff and the ordered special-fare rules.  When the
store has no tariff, or cannot be read, the configured defaults are used
instead.  The fallback is never silent: it is logged and the resulting
``PricingConfig`` carries ``source="defaults"``.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .repositories import PricingSettingsRepository
from ridecore.config import Settings
from ridecore.domain.entities import PeakTimeRule, PricingConfig, SpecialFareRule
from ridecore.domain.errors import ValidationError

logger = logging.getLogger(__name__)


def _peak_rules(raw: list[dict]) -> tuple[PeakTimeRule, ...]:
    return tuple(
        PeakTimeRule(
            name=r.get("name", ""),
            start_time=r.get("start_time", ""),
            end_time=r.get("end_time", ""),
            surcharge_percent=float(r.get("surcharge_percent", 0.0)),
        )
        for r in raw
    )


def default_pricing_config(settings: Settings) -> PricingConfig:
    return PricingConfig(
        base_fare=settings.default_base_fare,
        per_km_fare=settings.default_per_km_fare,
        per_minute_fare=settings.default_per_minute_fare,
        service_multipliers=dict(settings.default_service_multipliers),
        peak_time_rules=_peak_rules(settings.default_peak_time_rules),
        negotiation_range_percent=settings.default_negotiation_range_percent,
        source="defaults",
    )


async def load_pricing_config(session: AsyncSession, settings: Settings) -> PricingConfig:
    repo = PricingSettingsRepository(session)
    try:
        row = await repo.get()
        rules = await repo.get_special_rules()
    except SQLAlchemyError:
        logger.exception("Pricing settings unreadable; falling back to defaults")
        await session.rollback()
        return default_pricing_config(settings)

    special = tuple(
        SpecialFareRule(
            name=r.name,
            start_date=r.start_date,
            end_date=r.end_date,
            surcharge_percent=r.surcharge_percent,
        )
        for r in rules
    )

    if row is None:
        logger.warning("No pricing settings stored; using configured defaults")
        return replace(default_pricing_config(settings), special_fare_rules=special)

    try:
        return PricingConfig(
            base_fare=row.base_fare,
            per_km_fare=row.per_km_fare,
            per_minute_fare=row.per_minute_fare,
            service_multipliers=dict(row.service_multipliers or {}),
            special_fare_rules=special,
            peak_time_rules=_peak_rules(row.peak_time_rules or []),
            negotiation_range_percent=row.negotiation_range_percent,
            source="database",
        )
    except ValidationError:
        logger.exception("Stored pricing settings are invalid; falling back to defaults")
        return default_pricing_config(settings)
