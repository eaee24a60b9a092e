"""
Ride operations: booking, passenger-side fare negotiation, driver status
steps and cancellation.

Booking re-quotes on the server (the client's displayed quote is never
trusted), consumes one coupon use atomically and then runs the first
dispatch.  Status changes go through the guards in ``domain.lifecycle`` and
are applied as a single conditional update; a lost race is reported as a
structured failure, never as a partial write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.config import Settings, settings as default_settings
from ridecore.domain.entities import (
    Coupon,
    FareBreakdown,
    Location,
    PricingConfig,
    TripFacts,
)
from ridecore.domain.enums import (
    CancelActor,
    DriverStatus,
    NegotiationStatus,
    PaymentMethod,
    RideStatus,
    ServiceType,
)
from ridecore.domain.errors import (
    AssignmentConflict,
    CouponError,
    InvalidTransition,
    NoDriversAvailable,
    ValidationError,
)
from ridecore.domain.lifecycle import check_advance, check_cancel, releases_driver
from ridecore.domain.negotiation import (
    BandNegotiationPolicy,
    NegotiationPolicy,
    NegotiationState,
)
from ridecore.infrastructure.models import RideModel
from ridecore.infrastructure.repositories import (
    CouponRepository,
    DriverRepository,
    PassengerRepository,
    RideRepository,
)
from ridecore.services.assignment import AssignmentCoordinator
from ridecore.services.quoting import QuoteService, fare_after_coupon
from ridecore.services.results import RideResult

logger = logging.getLogger(__name__)

CANCEL_ATTEMPTS = 3


@dataclass(frozen=True)
class RideRequest:
    passenger_id: int
    pickup: Location
    dropoff: Location
    distance_km: float
    duration_minutes: float
    service_type: ServiceType
    payment_method: PaymentMethod
    ride_timestamp: datetime
    pickup_address: str = ""
    dropoff_address: str = ""
    coupon_code: Optional[str] = None
    idempotency_key: Optional[str] = None


class RideService:
    def __init__(
        self,
        session: AsyncSession,
        settings: Settings = default_settings,
        policy: Optional[NegotiationPolicy] = None,
    ):
        self.session = session
        self.settings = settings
        self.rides = RideRepository(session)
        self.drivers = DriverRepository(session)
        self.passengers = PassengerRepository(session)
        self.coupons = CouponRepository(session)
        self.quotes = QuoteService(session, settings)
        self.coordinator = AssignmentCoordinator(session, settings)
        self.policy = policy or BandNegotiationPolicy(
            settings.counter_tolerance_percent, settings.price_grid_step
        )

    # ── requestRide ───────────────────────────────────────────────────

    async def request_ride(self, request: RideRequest, now: datetime) -> RideResult:
        if request.idempotency_key:
            existing = await self.rides.get_by_idempotency_key(request.idempotency_key)
            if existing:
                return _replay(existing, request)

        if await self.passengers.get_by_id(request.passenger_id) is None:
            return RideResult.fail(
                ValidationError(f"Passenger {request.passenger_id} not found")
            )
        active = await self.rides.get_active_for_passenger(request.passenger_id)
        if active is not None:
            return RideResult.fail(
                AssignmentConflict(
                    f"Passenger {request.passenger_id} already has an active ride"
                ),
                active,
            )

        try:
            trip = TripFacts(
                distance_km=request.distance_km,
                duration_minutes=request.duration_minutes,
                service_type=request.service_type,
                ride_timestamp=request.ride_timestamp,
                coupon_code=request.coupon_code,
            )
        except ValidationError as exc:
            return RideResult.fail(exc)

        breakdown = await self.quotes.quote_fare(trip, now)
        coupon = None
        if breakdown.coupon_code:
            coupon = await self.coupons.get_by_code(breakdown.coupon_code)
            if not await self.coupons.consume(breakdown.coupon_code):
                logger.info(
                    "Coupon %s ran out before booking; charging the full fare",
                    breakdown.coupon_code,
                )
                breakdown = self.quotes.engine.without_coupon(
                    breakdown, CouponError.USAGE_LIMIT_REACHED
                )
                coupon = None

        try:
            ride = await self._create_ride(request, breakdown, coupon, now)
        except IntegrityError:
            if not request.idempotency_key:
                raise
            # Another request with the same key inserted first.
            await self.session.rollback()
            existing = await self.rides.get_by_idempotency_key(request.idempotency_key)
            if existing is None:
                raise
            logger.info(
                "Idempotency key %s raced; replaying ride %d",
                request.idempotency_key, existing.id,
            )
            return _replay(existing, request)

        logger.info(
            "Ride %d requested by passenger %d: %.2f (%s)",
            ride.id, request.passenger_id, breakdown.total, ride.service_type.value,
        )

        dispatched = await self.coordinator.dispatch(ride.id, now)
        return RideResult.ok(
            dispatched.ride or ride,
            "Ride requested",
            offered_to=dispatched.extra.get("offered_to"),
            search_exhausted=dispatched.error_code == NoDriversAvailable.code,
            warnings=list(breakdown.warnings),
        )

    async def _create_ride(
        self,
        request: RideRequest,
        breakdown: FareBreakdown,
        coupon: Optional[Coupon],
        now: datetime,
    ) -> RideModel:
        return await self.rides.create(
            RideModel(
                passenger_id=request.passenger_id,
                pickup_address=request.pickup_address,
                pickup_lat=request.pickup.latitude,
                pickup_lng=request.pickup.longitude,
                dropoff_address=request.dropoff_address,
                dropoff_lat=request.dropoff.latitude,
                dropoff_lng=request.dropoff.longitude,
                service_type=ServiceType(request.service_type),
                payment_method=PaymentMethod(request.payment_method),
                status=RideStatus.SEARCHING,
                search_exhausted=False,
                fare_breakdown=breakdown.to_dict(),
                reference_fare=breakdown.fare_before_discount,
                agreed_fare=breakdown.fare_before_discount,
                final_fare=breakdown.total,
                coupon_code=coupon.code if coupon else None,
                coupon_discount_type=coupon.discount_type if coupon else None,
                coupon_value=coupon.value if coupon else None,
                negotiation_rounds=0,
                is_rateable=False,
                idempotency_key=request.idempotency_key,
                requested_at=now,
            )
        )

    # ── proposeFare ───────────────────────────────────────────────────

    async def propose_fare(
        self,
        ride_id: int,
        passenger_id: int,
        amount: float,
        now: datetime,
    ) -> RideResult:
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            return RideResult.not_found(ride_id)
        if ride.passenger_id != passenger_id:
            return RideResult.fail(
                InvalidTransition("Only the ride's passenger can propose a fare"), ride
            )
        if ride.status != RideStatus.SEARCHING:
            return RideResult.fail(
                InvalidTransition(
                    f"Fares can only be negotiated while searching, ride is "
                    f"{RideStatus(ride.status).value}"
                ),
                ride,
            )

        state = self._negotiation_state(ride, await self.quotes.pricing_config(), now)
        try:
            if amount <= 0:
                raise ValidationError(f"Proposed fare must be positive, got {amount}")
            amount = self.quotes.engine.normalize(amount)
            new_state, outcome = state.propose(amount, self.policy)
        except ValidationError as exc:
            return RideResult.fail(exc, ride)

        values = {
            "negotiation_status": new_state.status,
            "negotiation_rounds": new_state.rounds,
            "proposed_fare": new_state.proposed_fare,
            "counter_fare": new_state.counter_fare,
            "negotiation_expires_at": None,
        }
        if outcome.decision == NegotiationStatus.ACCEPTED:
            values["agreed_fare"] = outcome.amount
            values["final_fare"] = fare_after_coupon(self.quotes.engine, ride, outcome.amount)
        elif outcome.decision == NegotiationStatus.COUNTER_OFFERED:
            values["negotiation_expires_at"] = now + timedelta(
                seconds=self.settings.counter_offer_timeout_seconds
            )

        if not await self.rides.update_negotiation(
            ride_id, ride.negotiation_rounds, ride.negotiation_status, **values
        ):
            ride = await self.rides.get_by_id(ride_id, fresh=True)
            return RideResult.fail(
                AssignmentConflict(f"Ride {ride_id} changed during negotiation"), ride
            )

        ride = await self.rides.get_by_id(ride_id, fresh=True)
        return RideResult.ok(
            ride,
            outcome.reason or outcome.decision.value,
            decision=outcome.decision.value,
            amount=outcome.amount,
            reason=outcome.reason,
            rounds=new_state.rounds,
            negotiation_status=new_state.status.value,
        )

    def _negotiation_state(
        self, ride: RideModel, config: PricingConfig, now: datetime
    ) -> NegotiationState:
        state = NegotiationState.open(
            ride.reference_fare,
            config.negotiation_range_percent,
            self.settings.driver_min_fare_percent,
            self.settings.driver_max_fare_percent,
            self.settings.negotiation_max_rounds,
        )
        status = (
            NegotiationStatus(ride.negotiation_status)
            if ride.negotiation_status
            else NegotiationStatus.NEGOTIATING
        )
        if (
            status == NegotiationStatus.COUNTER_OFFERED
            and ride.negotiation_expires_at is not None
            and ride.negotiation_expires_at < now
        ):
            status = NegotiationStatus.REJECTED
        return replace(
            state,
            rounds=ride.negotiation_rounds,
            status=status,
            proposed_fare=ride.proposed_fare,
            counter_fare=ride.counter_fare,
        )

    # ── advanceRideStatus ─────────────────────────────────────────────

    async def advance_ride_status(
        self,
        ride_id: int,
        driver_id: int,
        new_status: RideStatus,
        now: datetime,
    ) -> RideResult:
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            return RideResult.not_found(ride_id)

        new_status = RideStatus(new_status)
        try:
            expected = check_advance(
                RideStatus(ride.status), new_status, ride.driver_id, driver_id
            )
        except InvalidTransition as exc:
            return RideResult.fail(exc, ride)

        if not await self.rides.advance_status(ride_id, driver_id, expected, new_status, now):
            ride = await self.rides.get_by_id(ride_id, fresh=True)
            return RideResult.fail(
                AssignmentConflict(f"Ride {ride_id} changed before the status update"),
                ride,
            )

        if new_status == RideStatus.COMPLETED:
            await self.drivers.set_status(
                driver_id, DriverStatus.ON_RIDE, DriverStatus.AVAILABLE
            )
            await self.passengers.increment_completed_rides(ride.passenger_id)

        logger.info("Ride %d -> %s (driver %d)", ride_id, new_status.value, driver_id)
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        return RideResult.ok(ride, f"Ride is {new_status.value}")

    # ── cancelRide ────────────────────────────────────────────────────

    async def cancel_ride(
        self,
        ride_id: int,
        actor: CancelActor,
        actor_id: Optional[int],
        reason_code: Optional[str],
        now: datetime,
    ) -> RideResult:
        actor = CancelActor(actor)
        ride = None
        for attempt in range(1, CANCEL_ATTEMPTS + 1):
            ride = await self.rides.get_by_id(ride_id, fresh=True)
            if ride is None:
                return RideResult.not_found(ride_id)

            status = RideStatus(ride.status)
            if status == RideStatus.CANCELLED:
                return RideResult.ok(ride, "Ride already cancelled", already_cancelled=True)
            if actor == CancelActor.PASSENGER and ride.passenger_id != actor_id:
                return RideResult.fail(
                    InvalidTransition("Only the ride's passenger can cancel it"), ride
                )
            try:
                check_cancel(
                    status,
                    actor,
                    reason_code,
                    self.settings.cancellation_reason_codes,
                    assigned_driver_id=ride.driver_id,
                    actor_id=actor_id,
                )
            except (ValidationError, InvalidTransition) as exc:
                return RideResult.fail(exc, ride)

            driver_id = ride.driver_id
            if await self.rides.cancel(ride_id, status, driver_id, actor, reason_code, now):
                released = releases_driver(status) and driver_id is not None
                if released:
                    await self.drivers.set_status(
                        driver_id, DriverStatus.ON_RIDE, DriverStatus.AVAILABLE
                    )
                logger.info(
                    "Ride %d cancelled by %s from %s (%s)",
                    ride_id, actor.value, status.value, reason_code,
                )
                ride = await self.rides.get_by_id(ride_id, fresh=True)
                return RideResult.ok(
                    ride,
                    "Ride cancelled",
                    already_cancelled=False,
                    released_driver_id=driver_id if released else None,
                )

            logger.debug("Cancel of ride %d raced (attempt %d)", ride_id, attempt)

        return RideResult.fail(
            AssignmentConflict(f"Ride {ride_id} kept changing; cancel not applied"), ride
        )


def _replay(existing: RideModel, request: RideRequest) -> RideResult:
    """Answer a repeated idempotency key; keys never cross passengers."""
    if existing.passenger_id != request.passenger_id:
        logger.warning(
            "Passenger %d reused idempotency key %s of another passenger",
            request.passenger_id, request.idempotency_key,
        )
        return RideResult.fail(
            AssignmentConflict("Idempotency key already used by another passenger")
        )
    return RideResult.ok(existing, "Duplicate request", duplicate=True)
