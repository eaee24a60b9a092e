"""
Quote endpoint
==============

POST /api/v1/quotes -- itemised fare; creates nothing, consumes no coupon use
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.api.dependencies import get_db, get_settings
from ridecore.api.middleware import limiter
from ridecore.api.schemas import QuoteRequest, QuoteResponse
from ridecore.config import Settings
from ridecore.domain.entities import TripFacts
from ridecore.domain.errors import ValidationError
from ridecore.infrastructure.database import utcnow
from ridecore.services.quoting import QuoteService

router = APIRouter(prefix="/quotes", tags=["quotes"])


@router.post("", response_model=QuoteResponse, summary="Quote a fare")
@limiter.limit("100/minute")
async def quote_fare(
    request: Request,
    body: QuoteRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    try:
        trip = TripFacts(
            distance_km=body.distance_km,
            duration_minutes=body.duration_minutes,
            service_type=body.service_type,
            ride_timestamp=body.ride_timestamp or datetime.now(timezone.utc),
            coupon_code=body.coupon_code,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    service = QuoteService(db, settings)
    config = await service.pricing_config()
    breakdown = await service.quote_fare(trip, utcnow(), config=config)
    return QuoteResponse(**breakdown.to_dict(), pricing_source=config.source)
