"""
Ride Assignment Coordinator
===========================

Offers a ride to one driver at a time (daisy-chain dispatch):

1. ``dispatch`` picks the nearest eligible driver and claims the ride's
   single offer slot for them until ``offer_expires_at``.
2. The driver accepts, rejects or counter-offers (``respond_to_offer``).
   A counter-offer is answered by the passenger
   (``respond_to_counter_offer``).
3. Reject, declined counter and timeout all append the driver to the ride's
   rejections and dispatch to the next candidate.

Exclusivity
-----------
Every step is a compare-and-set in ``RideRepository``; nothing here reads a
row and then writes it back.  A driver accept first flips the driver
``available -> on-ride`` and then the ride ``searching -> accepted``; if the
ride update loses, the driver flip is undone in the same unit of work.

The coordinator never commits: the caller's session (request or sweeper
cycle) owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridecore.config import Settings, settings as default_settings
from ridecore.domain.entities import Location
from ridecore.domain.enums import DriverStatus, OfferDecision, RideStatus, ServiceType
from ridecore.domain.errors import (
    AssignmentConflict,
    InvalidTransition,
    NoDriversAvailable,
    ValidationError,
)
from ridecore.domain.matching import rank_candidates, search_cells
from ridecore.domain.negotiation import driver_counter_band
from ridecore.domain.normalizer import normalize_price
from ridecore.infrastructure.models import RideModel
from ridecore.infrastructure.repositories import DriverRepository, RideRepository
from ridecore.services.quoting import build_pricing_engine, fare_after_coupon
from ridecore.services.results import RideResult

logger = logging.getLogger(__name__)

REJECTED = "rejected"
TIMEOUT = "timeout"
COUNTER_DECLINED = "counter_declined"
UNAVAILABLE = "unavailable"


class AssignmentCoordinator:
    def __init__(self, session: AsyncSession, settings: Settings = default_settings):
        self.session = session
        self.settings = settings
        self.rides = RideRepository(session)
        self.drivers = DriverRepository(session)
        self.engine = build_pricing_engine(settings)

    # ── Dispatch ──────────────────────────────────────────────────────

    async def dispatch(self, ride_id: int, now: datetime) -> RideResult:
        """Offer the ride to the next eligible driver, nearest first."""
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            return RideResult.not_found(ride_id)

        if ride.offered_to_id is not None and _offer_lapsed(ride, now):
            await self._expire_offer(ride_id, ride.offered_to_id, now)
            ride = await self.rides.get_by_id(ride_id, fresh=True)

        pending = self._pending_or_conflict(ride)
        if pending is not None:
            return pending

        service_type = ServiceType(ride.service_type)
        pickup = Location(ride.pickup_lat, ride.pickup_lng)
        cells = search_cells(
            pickup, self.settings.h3_resolution, self.settings.search_ring_size
        )
        rejected = await self.rides.rejected_driver_ids(ride_id)
        candidates = rank_candidates(
            await self.drivers.get_candidates(service_type, cells, now),
            pickup,
            service_type,
            rejected,
        )

        expires_at = now + timedelta(seconds=self.settings.offer_timeout_seconds)
        for candidate in candidates:
            if await self.rides.claim_offer(ride_id, candidate.id, expires_at):
                logger.info(
                    "Ride %d offered to driver %d until %s",
                    ride_id, candidate.id, expires_at.isoformat(),
                )
                ride = await self.rides.get_by_id(ride_id, fresh=True)
                return RideResult.ok(
                    ride,
                    f"Offer sent to driver {candidate.id}",
                    offered_to=candidate.id,
                    offer_expires_at=expires_at,
                )

            # Either this driver was rejected meanwhile or the slot is gone.
            ride = await self.rides.get_by_id(ride_id, fresh=True)
            pending = self._pending_or_conflict(ride)
            if pending is not None:
                logger.debug("Ride %d claimed concurrently", ride_id)
                return pending

        await self.rides.mark_search_exhausted(ride_id)
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        logger.info(
            "No drivers available for ride %d (%d already declined)",
            ride_id, len(rejected),
        )
        return RideResult.fail(
            NoDriversAvailable(f"No drivers available for ride {ride_id}"), ride
        )

    def _pending_or_conflict(self, ride: RideModel) -> Optional[RideResult]:
        """None while the ride can take a new offer."""
        if ride.status not in (RideStatus.SEARCHING, RideStatus.COUNTER_OFFERED):
            return RideResult.fail(
                AssignmentConflict(
                    f"Ride {ride.id} is {RideStatus(ride.status).value}; nothing to dispatch"
                ),
                ride,
            )
        if ride.offered_to_id is not None:
            return RideResult.ok(
                ride,
                "An offer is already pending",
                offered_to=ride.offered_to_id,
                offer_expires_at=ride.offer_expires_at,
            )
        return None

    async def _expire_offer(self, ride_id: int, driver_id: int, now: datetime) -> bool:
        if not await self.rides.release_offer(ride_id, driver_id, expired_before=now):
            return False
        await self.rides.add_rejection(ride_id, driver_id, TIMEOUT)
        logger.info("Offer of ride %d to driver %d timed out", ride_id, driver_id)
        return True

    async def expire_offers(self, now: datetime) -> int:
        """Time out every lapsed offer and move each ride to its next driver."""
        expired = [
            (ride.id, ride.offered_to_id)
            for ride in await self.rides.get_expired_offers(now)
        ]
        count = 0
        for ride_id, driver_id in expired:
            if not await self._expire_offer(ride_id, driver_id, now):
                continue  # answered in the meantime
            count += 1
            await self.dispatch(ride_id, now)
        return count

    # ── Driver response ───────────────────────────────────────────────

    async def respond_to_offer(
        self,
        ride_id: int,
        driver_id: int,
        decision: OfferDecision,
        now: datetime,
        amount: Optional[float] = None,
    ) -> RideResult:
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            return RideResult.not_found(ride_id)
        if (
            ride.status != RideStatus.SEARCHING
            or ride.offered_to_id != driver_id
            or _offer_lapsed(ride, now)
        ):
            return RideResult.fail(
                AssignmentConflict(f"Ride {ride_id} is no longer offered to driver {driver_id}"),
                ride,
            )

        decision = OfferDecision(decision)
        if decision == OfferDecision.ACCEPT:
            return await self._claim(ride, driver_id, RideStatus.SEARCHING, now)
        if decision == OfferDecision.REJECT:
            return await self._decline(ride, driver_id, RideStatus.SEARCHING, REJECTED, now)
        return await self._counter(ride, driver_id, amount, now)

    async def _counter(
        self,
        ride: RideModel,
        driver_id: int,
        amount: Optional[float],
        now: datetime,
    ) -> RideResult:
        if amount is None:
            return RideResult.fail(ValidationError("A counter-offer needs an amount"), ride)
        if amount <= 0:
            return RideResult.fail(
                ValidationError(f"Counter-offer must be positive, got {amount}"), ride
            )

        step = self.settings.price_grid_step
        amount = normalize_price(amount, step)
        low, high = driver_counter_band(
            ride.agreed_fare,
            self.settings.driver_counter_max_decrease_percent,
            self.settings.driver_counter_max_increase_percent,
            step,
        )
        if not low <= amount <= high:
            return RideResult.fail(
                ValidationError(
                    f"Counter-offer {amount:.2f} outside allowed range [{low:.2f}, {high:.2f}]"
                ),
                ride,
            )
        if ride.negotiation_rounds >= self.settings.negotiation_max_rounds:
            return RideResult.fail(ValidationError("round limit reached"), ride)

        expires_at = now + timedelta(seconds=self.settings.counter_offer_timeout_seconds)
        if not await self.rides.start_counter_offer(
            ride.id,
            driver_id,
            amount,
            now,
            expires_at,
            self.settings.negotiation_max_rounds,
        ):
            ride = await self.rides.get_by_id(ride.id, fresh=True)
            return RideResult.fail(
                AssignmentConflict(f"Ride {ride.id} changed before the counter-offer"), ride
            )

        logger.info("Driver %d countered ride %d at %.2f", driver_id, ride.id, amount)
        ride = await self.rides.get_by_id(ride.id, fresh=True)
        return RideResult.ok(
            ride,
            "Counter-offer sent to the passenger",
            counter_fare=amount,
            offer_expires_at=expires_at,
        )

    # ── Passenger response to a driver counter-offer ──────────────────

    async def respond_to_counter_offer(
        self,
        ride_id: int,
        passenger_id: int,
        accept: bool,
        now: datetime,
    ) -> RideResult:
        ride = await self.rides.get_by_id(ride_id, fresh=True)
        if ride is None:
            return RideResult.not_found(ride_id)
        if ride.passenger_id != passenger_id:
            return RideResult.fail(
                InvalidTransition("Only the ride's passenger can answer a counter-offer"),
                ride,
            )
        if (
            ride.status != RideStatus.COUNTER_OFFERED
            or ride.offered_to_id is None
            or ride.driver_counter_fare is None
            or _offer_lapsed(ride, now)
        ):
            return RideResult.fail(
                AssignmentConflict(f"Ride {ride_id} has no pending counter-offer"), ride
            )

        driver_id = ride.offered_to_id
        if accept:
            agreed = ride.driver_counter_fare
            return await self._claim(
                ride,
                driver_id,
                RideStatus.COUNTER_OFFERED,
                now,
                agreed_fare=agreed,
                final_fare=fare_after_coupon(self.engine, ride, agreed),
            )
        return await self._decline(
            ride, driver_id, RideStatus.COUNTER_OFFERED, COUNTER_DECLINED, now
        )

    # ── Shared steps ──────────────────────────────────────────────────

    async def _claim(
        self,
        ride: RideModel,
        driver_id: int,
        from_status: RideStatus,
        now: datetime,
        agreed_fare: Optional[float] = None,
        final_fare: Optional[float] = None,
    ) -> RideResult:
        if not await self.drivers.set_status(
            driver_id, DriverStatus.AVAILABLE, DriverStatus.ON_RIDE
        ):
            return await self._drop_unavailable(ride, driver_id, from_status, now)

        if not await self.rides.assign_driver(
            ride.id, driver_id, from_status, now, agreed_fare, final_fare
        ):
            await self.drivers.set_status(
                driver_id, DriverStatus.ON_RIDE, DriverStatus.AVAILABLE
            )
            logger.info("Driver %d lost the race for ride %d", driver_id, ride.id)
            ride = await self.rides.get_by_id(ride.id, fresh=True)
            return RideResult.fail(
                AssignmentConflict(f"Ride {ride.id} is no longer available"), ride
            )

        logger.info("Ride %d accepted by driver %d", ride.id, driver_id)
        ride = await self.rides.get_by_id(ride.id, fresh=True)
        return RideResult.ok(ride, "Ride accepted", driver_id=driver_id)

    async def _drop_unavailable(
        self,
        ride: RideModel,
        driver_id: int,
        from_status: RideStatus,
        now: datetime,
    ) -> RideResult:
        """The offered driver went off duty: free the slot and move on."""
        offered_to = None
        if await self.rides.release_offer(ride.id, driver_id, statuses=(from_status,)):
            await self.rides.add_rejection(ride.id, driver_id, UNAVAILABLE)
            logger.info(
                "Driver %d is no longer available; re-dispatching ride %d",
                driver_id, ride.id,
            )
            follow_up = await self.dispatch(ride.id, now)
            offered_to = follow_up.extra.get("offered_to")
        ride = await self.rides.get_by_id(ride.id, fresh=True)
        return RideResult.fail(
            AssignmentConflict(f"Driver {driver_id} is not available"),
            ride,
            offered_to=offered_to,
        )

    async def _decline(
        self,
        ride: RideModel,
        driver_id: int,
        from_status: RideStatus,
        reason: str,
        now: datetime,
    ) -> RideResult:
        if not await self.rides.release_offer(ride.id, driver_id, statuses=(from_status,)):
            ride = await self.rides.get_by_id(ride.id, fresh=True)
            return RideResult.fail(
                AssignmentConflict(f"Ride {ride.id} is no longer offered to driver {driver_id}"),
                ride,
            )
        await self.rides.add_rejection(ride.id, driver_id, reason)
        logger.info("Driver %d dropped from ride %d (%s)", driver_id, ride.id, reason)

        follow_up = await self.dispatch(ride.id, now)
        return RideResult.ok(
            follow_up.ride,
            f"Offer {reason}",
            offered_to=follow_up.extra.get("offered_to"),
            search_exhausted=follow_up.error_code == NoDriversAvailable.code,
        )


def _offer_lapsed(ride: RideModel, now: datetime) -> bool:
    return ride.offer_expires_at is None or ride.offer_expires_at < now
