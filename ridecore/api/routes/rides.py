"""
Ride endpoints
==============

POST /api/v1/rides                                -- book a ride (202, dispatch starts)
GET  /api/v1/rides/{ride_id}                      -- current state and fare
POST /api/v1/rides/{ride_id}/proposals            -- passenger proposes a fare
POST /api/v1/rides/{ride_id}/offer-response       -- driver accepts / rejects / counters
POST /api/v1/rides/{ride_id}/counter-offer-response -- passenger answers a counter
POST /api/v1/rides/{ride_id}/status               -- driver: arrived / in-progress / completed
POST /api/v1/rides/{ride_id}/cancel               -- passenger, driver or system cancel
POST /api/v1/rides/{ride_id}/dispatch             -- retry the driver search
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.api.dependencies import get_db, get_settings
from ridecore.api.errors import action_response
from ridecore.api.middleware import limiter
from ridecore.api.schemas import (
    CancelRequest,
    CounterOfferResponseRequest,
    FareProposalRequest,
    OfferResponseRequest,
    RideActionResponse,
    RideCreateRequest,
    RideResponse,
    StatusUpdateRequest,
)
from ridecore.config import Settings
from ridecore.domain.entities import Location
from ridecore.domain.errors import NoDriversAvailable
from ridecore.infrastructure.database import utcnow
from ridecore.infrastructure.repositories import RideRepository
from ridecore.services.assignment import AssignmentCoordinator
from ridecore.services.results import RideResult
from ridecore.services.rides import RideRequest, RideService

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=202,
    response_model=RideActionResponse,
    summary="Book a ride",
    responses={202: {"description": "Ride created; driver dispatch has started."}},
)
@limiter.limit("100/minute")
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    ride_request = RideRequest(
        passenger_id=body.passenger_id,
        pickup=Location(body.pickup_lat, body.pickup_lng),
        dropoff=Location(body.dropoff_lat, body.dropoff_lng),
        pickup_address=body.pickup_address,
        dropoff_address=body.dropoff_address,
        distance_km=body.distance_km,
        duration_minutes=body.duration_minutes,
        service_type=body.service_type,
        payment_method=body.payment_method,
        ride_timestamp=body.ride_timestamp or datetime.now(timezone.utc),
        coupon_code=body.coupon_code,
        idempotency_key=body.idempotency_key,
    )
    result = await RideService(db, settings).request_ride(ride_request, utcnow())
    return action_response(result)


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get ride state and fare",
)
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
):
    ride = await RideRepository(db).get_by_id(ride_id)
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")
    return ride


@router.post(
    "/{ride_id}/proposals",
    response_model=RideActionResponse,
    summary="Propose a fare for a searching ride",
)
@limiter.limit("100/minute")
async def propose_fare(
    request: Request,
    ride_id: int,
    body: FareProposalRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = await RideService(db, settings).propose_fare(
        ride_id, body.passenger_id, body.amount, utcnow()
    )
    return action_response(result)


@router.post(
    "/{ride_id}/offer-response",
    response_model=RideActionResponse,
    summary="Driver answers the offer they hold",
)
@limiter.limit("100/minute")
async def respond_to_offer(
    request: Request,
    ride_id: int,
    body: OfferResponseRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = await AssignmentCoordinator(db, settings).respond_to_offer(
        ride_id, body.driver_id, body.decision, utcnow(), amount=body.amount
    )
    return action_response(result)


@router.post(
    "/{ride_id}/counter-offer-response",
    response_model=RideActionResponse,
    summary="Passenger accepts or declines a driver counter-offer",
)
@limiter.limit("100/minute")
async def respond_to_counter_offer(
    request: Request,
    ride_id: int,
    body: CounterOfferResponseRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = await AssignmentCoordinator(db, settings).respond_to_counter_offer(
        ride_id, body.passenger_id, body.accept, utcnow()
    )
    return action_response(result)


@router.post(
    "/{ride_id}/status",
    response_model=RideActionResponse,
    summary="Advance an accepted ride",
    description="Only the assigned driver: accepted -> arrived -> in-progress -> completed.",
)
@limiter.limit("100/minute")
async def advance_ride_status(
    request: Request,
    ride_id: int,
    body: StatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = await RideService(db, settings).advance_ride_status(
        ride_id, body.driver_id, body.status, utcnow()
    )
    return action_response(result)


@router.post(
    "/{ride_id}/cancel",
    response_model=RideActionResponse,
    summary="Cancel a ride",
    description=(
        "Passengers may cancel until the trip starts; drivers once assigned. "
        "An accepted or arrived ride frees its driver."
    ),
)
@limiter.limit("100/minute")
async def cancel_ride(
    request: Request,
    ride_id: int,
    body: CancelRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = await RideService(db, settings).cancel_ride(
        ride_id, body.actor, body.actor_id, body.reason_code, utcnow()
    )
    return action_response(result)


@router.post(
    "/{ride_id}/dispatch",
    response_model=RideActionResponse,
    summary="Search again for a driver",
)
@limiter.limit("100/minute")
async def dispatch_ride(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = await AssignmentCoordinator(db, settings).dispatch(ride_id, utcnow())
    if result.error_code == NoDriversAvailable.code:
        # Still searching; the flag tells the client to retry later.
        result = RideResult.ok(result.ride, result.message, search_exhausted=True)
    return action_response(result)
