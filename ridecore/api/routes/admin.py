"""
Admin / observability endpoints
===============================

GET /api/v1/admin/pricing -- tariff in force (``source`` says if it is the fallback)
PUT /api/v1/admin/pricing -- replace the tariff and its special-fare rules
GET /api/v1/admin/health  -- simple health check
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.api.dependencies import get_db, get_settings
from ridecore.api.middleware import limiter
from ridecore.api.schemas import (
    HealthResponse,
    PeakTimeRuleSchema,
    PricingSettingsPayload,
    PricingSettingsResponse,
    SpecialFareRuleSchema,
)
from ridecore.config import Settings
from ridecore.domain.entities import PricingConfig
from ridecore.infrastructure.pricing_provider import load_pricing_config
from ridecore.infrastructure.repositories import PricingSettingsRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _to_response(config: PricingConfig) -> PricingSettingsResponse:
    return PricingSettingsResponse(
        base_fare=config.base_fare,
        per_km_fare=config.per_km_fare,
        per_minute_fare=config.per_minute_fare,
        negotiation_range_percent=config.negotiation_range_percent,
        service_multipliers=dict(config.service_multipliers),
        peak_time_rules=[
            PeakTimeRuleSchema(
                name=r.name,
                start_time=r.start_time,
                end_time=r.end_time,
                surcharge_percent=r.surcharge_percent,
            )
            for r in config.peak_time_rules
        ],
        special_fare_rules=[
            SpecialFareRuleSchema(
                name=r.name,
                start_date=r.start_date,
                end_date=r.end_date,
                surcharge_percent=r.surcharge_percent,
            )
            for r in config.special_fare_rules
        ],
        source=config.source,
    )


@router.get(
    "/pricing",
    response_model=PricingSettingsResponse,
    summary="Tariff currently used for quotes",
)
@limiter.limit("100/minute")
async def get_pricing(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return _to_response(await load_pricing_config(db, settings))


@router.put(
    "/pricing",
    response_model=PricingSettingsResponse,
    summary="Replace the tariff",
)
@limiter.limit("100/minute")
async def put_pricing(
    request: Request,
    body: PricingSettingsPayload,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    values = body.model_dump(exclude={"special_fare_rules"})
    special = [rule.model_dump() for rule in body.special_fare_rules]
    await PricingSettingsRepository(db).save(values, special)
    logger.info(
        "Pricing settings replaced (%d peak rules, %d special rules)",
        len(body.peak_time_rules), len(special),
    )
    return _to_response(await load_pricing_config(db, settings))


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
