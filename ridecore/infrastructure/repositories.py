"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Compare-and-set
---------------
Every method that changes assignment or status is a single conditional
``UPDATE ... WHERE <expected state>`` and returns ``True`` only when exactly
one row matched.  A ``False`` means another session won the race; callers
never fall back to read-then-write.  Bulk updates skip ORM session
synchronisation, so callers re-read rows with ``get_by_id(..., fresh=True)``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import exists, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    CouponModel,
    DriverModel,
    PassengerModel,
    PricingSettingsModel,
    RideModel,
    RideRejectionModel,
    SpecialFareRuleModel,
)
from ridecore.domain.entities import CandidateDriver, Coupon
from ridecore.domain.enums import (
    CancelActor,
    CouponStatus,
    DriverStatus,
    NegotiationStatus,
    RideStatus,
    ServiceType,
)

OFFERABLE_STATUSES = (RideStatus.SEARCHING, RideStatus.COUNTER_OFFERED)
ACTIVE_STATUSES = (
    RideStatus.SEARCHING,
    RideStatus.COUNTER_OFFERED,
    RideStatus.ACCEPTED,
    RideStatus.ARRIVED,
    RideStatus.IN_PROGRESS,
)

# Timestamp column stamped by each driver-initiated step.
_STATUS_TIMESTAMPS = {
    RideStatus.ARRIVED: "arrived_at",
    RideStatus.IN_PROGRESS: "started_at",
    RideStatus.COMPLETED: "completed_at",
}


def _rowcount(result) -> int:
    return result.rowcount or 0


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _cas(self, *where, **values: Any) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(*where)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return _rowcount(result) == 1

    # ── Reads ─────────────────────────────────────────────────────────

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int, fresh: bool = False) -> Optional[RideModel]:
        if not fresh:
            return await self.session.get(RideModel, ride_id)
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def get_active_for_passenger(self, passenger_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.passenger_id == passenger_id,
                RideModel.status.in_(ACTIVE_STATUSES),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def rejected_driver_ids(self, ride_id: int) -> set[int]:
        result = await self.session.execute(
            select(RideRejectionModel.driver_id).where(
                RideRejectionModel.ride_id == ride_id
            )
        )
        return set(result.scalars().all())

    async def get_expired_offers(self, now: datetime) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.status.in_(OFFERABLE_STATUSES),
                RideModel.offered_to_id.is_not(None),
                RideModel.offer_expires_at < now,
            )
            .order_by(RideModel.offer_expires_at)
        )
        return list(result.scalars().all())

    # ── Append-only rejections ────────────────────────────────────────

    async def add_rejection(self, ride_id: int, driver_id: int, reason: str) -> None:
        """Insert once; a repeated rejection of the same driver is a no-op."""
        dialect = self.session.get_bind().dialect.name
        insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
        await self.session.execute(
            insert_fn(RideRejectionModel)
            .values(ride_id=ride_id, driver_id=driver_id, reason=reason)
            .on_conflict_do_nothing(index_elements=["ride_id", "driver_id"])
        )

    # ── Offer claims ──────────────────────────────────────────────────

    async def claim_offer(
        self, ride_id: int, driver_id: int, expires_at: datetime
    ) -> bool:
        """Give *driver_id* the exclusive offer if nobody holds one."""
        never_rejected = ~exists().where(
            RideRejectionModel.ride_id == ride_id,
            RideRejectionModel.driver_id == driver_id,
        )
        return await self._cas(
            RideModel.id == ride_id,
            RideModel.status == RideStatus.SEARCHING,
            RideModel.driver_id.is_(None),
            RideModel.offered_to_id.is_(None),
            never_rejected,
            offered_to_id=driver_id,
            offer_expires_at=expires_at,
            search_exhausted=False,
        )

    async def release_offer(
        self,
        ride_id: int,
        driver_id: int,
        statuses: Iterable[RideStatus] = OFFERABLE_STATUSES,
        expired_before: Optional[datetime] = None,
    ) -> bool:
        """Drop *driver_id*'s offer and put the ride back in the pool."""
        where = [
            RideModel.id == ride_id,
            RideModel.offered_to_id == driver_id,
            RideModel.status.in_(tuple(statuses)),
        ]
        if expired_before is not None:
            where.append(RideModel.offer_expires_at < expired_before)
        return await self._cas(
            *where,
            status=RideStatus.SEARCHING,
            offered_to_id=None,
            offer_expires_at=None,
            driver_counter_fare=None,
        )

    async def assign_driver(
        self,
        ride_id: int,
        driver_id: int,
        from_status: RideStatus,
        now: datetime,
        agreed_fare: Optional[float] = None,
        final_fare: Optional[float] = None,
    ) -> bool:
        """
        The searching/counter-offered -> accepted claim.  Offer must be live.

        Fares are only written when a counter-offer fixes them; otherwise the
        row keeps whatever the passenger negotiated.
        """
        fares: dict[str, Any] = {}
        if agreed_fare is not None:
            fares = {"agreed_fare": agreed_fare, "final_fare": final_fare}
        claimed = await self._cas(
            RideModel.id == ride_id,
            RideModel.status == from_status,
            RideModel.offered_to_id == driver_id,
            RideModel.driver_id.is_(None),
            RideModel.offer_expires_at >= now,
            status=RideStatus.ACCEPTED,
            driver_id=driver_id,
            offered_to_id=None,
            offer_expires_at=None,
            driver_counter_fare=None,
            accepted_at=now,
            search_exhausted=False,
            **fares,
        )
        if claimed:
            await self._close_pending_counter(ride_id)
        return claimed

    async def start_counter_offer(
        self,
        ride_id: int,
        driver_id: int,
        amount: float,
        now: datetime,
        expires_at: datetime,
        max_rounds: int,
    ) -> bool:
        """A driver counter consumes one of the ride's negotiation rounds."""
        return await self._cas(
            RideModel.id == ride_id,
            RideModel.status == RideStatus.SEARCHING,
            RideModel.offered_to_id == driver_id,
            RideModel.offer_expires_at >= now,
            RideModel.negotiation_rounds < max_rounds,
            status=RideStatus.COUNTER_OFFERED,
            driver_counter_fare=amount,
            offer_expires_at=expires_at,
            negotiation_rounds=RideModel.negotiation_rounds + 1,
        )

    async def mark_search_exhausted(self, ride_id: int) -> bool:
        return await self._cas(
            RideModel.id == ride_id,
            RideModel.status == RideStatus.SEARCHING,
            RideModel.offered_to_id.is_(None),
            search_exhausted=True,
        )

    # ── Negotiation ───────────────────────────────────────────────────

    async def update_negotiation(
        self,
        ride_id: int,
        observed_rounds: int,
        observed_status: Optional[NegotiationStatus],
        **values: Any,
    ) -> bool:
        return await self._cas(
            RideModel.id == ride_id,
            RideModel.status == RideStatus.SEARCHING,
            RideModel.negotiation_rounds == observed_rounds,
            RideModel.negotiation_status.is_not_distinct_from(observed_status),
            **values,
        )

    async def expire_counter_proposals(self, now: datetime) -> int:
        """Lapsed counters default to a rejected negotiation."""
        result = await self.session.execute(
            update(RideModel)
            .where(
                RideModel.negotiation_status == NegotiationStatus.COUNTER_OFFERED,
                RideModel.negotiation_expires_at < now,
                RideModel.status.in_(OFFERABLE_STATUSES),
            )
            .values(
                negotiation_status=NegotiationStatus.REJECTED,
                counter_fare=None,
                negotiation_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        return _rowcount(result)

    async def _close_pending_counter(self, ride_id: int) -> None:
        """A ride that left the pool drops the passenger's open counter."""
        await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.negotiation_status == NegotiationStatus.COUNTER_OFFERED,
            )
            .values(
                negotiation_status=NegotiationStatus.REJECTED,
                counter_fare=None,
                negotiation_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def advance_status(
        self,
        ride_id: int,
        driver_id: int,
        expected: RideStatus,
        new: RideStatus,
        now: datetime,
    ) -> bool:
        values: dict[str, Any] = {"status": new, _STATUS_TIMESTAMPS[new]: now}
        if new == RideStatus.COMPLETED:
            values["is_rateable"] = True
        return await self._cas(
            RideModel.id == ride_id,
            RideModel.status == expected,
            RideModel.driver_id == driver_id,
            **values,
        )

    async def cancel(
        self,
        ride_id: int,
        observed_status: RideStatus,
        observed_driver_id: Optional[int],
        actor: CancelActor,
        reason_code: str,
        now: datetime,
    ) -> bool:
        cancelled = await self._cas(
            RideModel.id == ride_id,
            RideModel.status == observed_status,
            RideModel.driver_id.is_not_distinct_from(observed_driver_id),
            status=RideStatus.CANCELLED,
            cancelled_by=actor,
            cancellation_reason=reason_code,
            cancelled_at=now,
            offered_to_id=None,
            offer_expires_at=None,
            driver_counter_fare=None,
        )
        if cancelled:
            await self._close_pending_counter(ride_id)
        return cancelled


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, driver_id: int) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id)

    async def get_candidates(
        self,
        service_type: ServiceType,
        cells: Iterable[str],
        now: datetime,
    ) -> list[CandidateDriver]:
        """Available drivers in *cells* not already holding a live offer."""
        holding_offer = exists().where(
            RideModel.offered_to_id == DriverModel.id,
            RideModel.status.in_(OFFERABLE_STATUSES),
            RideModel.offer_expires_at >= now,
        )
        result = await self.session.execute(
            select(DriverModel).where(
                DriverModel.status == DriverStatus.AVAILABLE,
                DriverModel.service_type == service_type,
                DriverModel.h3_cell.in_(list(cells)),
                DriverModel.lat.is_not(None),
                DriverModel.lng.is_not(None),
                ~holding_offer,
            )
        )
        return [
            CandidateDriver(
                id=d.id,
                service_type=ServiceType(d.service_type),
                status=DriverStatus(d.status),
                lat=d.lat,
                lng=d.lng,
            )
            for d in result.scalars().all()
        ]

    async def set_status(
        self, driver_id: int, expected: DriverStatus, new: DriverStatus
    ) -> bool:
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id, DriverModel.status == expected)
            .values(status=new)
            .execution_options(synchronize_session=False)
        )
        return _rowcount(result) == 1

    async def update_location(
        self, driver_id: int, lat: float, lng: float, cell: str, now: datetime
    ) -> bool:
        """Best-effort periodic write; not ordered against ride assignment."""
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(lat=lat, lng=lng, h3_cell=cell, location_updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return _rowcount(result) == 1


class PassengerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, passenger_id: int) -> Optional[PassengerModel]:
        return await self.session.get(PassengerModel, passenger_id)

    async def increment_completed_rides(self, passenger_id: int) -> None:
        await self.session.execute(
            update(PassengerModel)
            .where(PassengerModel.id == passenger_id)
            .values(completed_rides=PassengerModel.completed_rides + 1)
            .execution_options(synchronize_session=False)
        )


class CouponRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        result = await self.session.execute(
            select(CouponModel)
            .where(CouponModel.code == code)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return Coupon(
            code=row.code,
            discount_type=row.discount_type,
            value=row.value,
            expiry_date=row.expiry_date,
            status=row.status,
            min_spend=row.min_spend,
            usage_limit=row.usage_limit,
            times_used=row.times_used,
        )

    async def consume(self, code: str) -> bool:
        """Use one redemption, only while the limit allows it."""
        result = await self.session.execute(
            update(CouponModel)
            .where(
                CouponModel.code == code,
                CouponModel.status == CouponStatus.ACTIVE,
                (CouponModel.usage_limit.is_(None))
                | (CouponModel.times_used < CouponModel.usage_limit),
            )
            .values(times_used=CouponModel.times_used + 1)
            .execution_options(synchronize_session=False)
        )
        return _rowcount(result) == 1


class PricingSettingsRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, settings_id: str = "main") -> Optional[PricingSettingsModel]:
        return await self.session.get(PricingSettingsModel, settings_id)

    async def get_special_rules(self) -> list[SpecialFareRuleModel]:
        result = await self.session.execute(
            select(SpecialFareRuleModel).order_by(
                SpecialFareRuleModel.position, SpecialFareRuleModel.id
            )
        )
        return list(result.scalars().all())

    async def save(
        self,
        values: dict[str, Any],
        special_rules: list[dict[str, Any]],
        settings_id: str = "main",
    ) -> PricingSettingsModel:
        """Replace the tariff and its special rules in one unit of work."""
        row = await self.get(settings_id)
        if row is None:
            row = PricingSettingsModel(id=settings_id, **values)
            self.session.add(row)
        else:
            for key, value in values.items():
                setattr(row, key, value)

        for existing in await self.get_special_rules():
            await self.session.delete(existing)
        for position, rule in enumerate(special_rules):
            self.session.add(SpecialFareRuleModel(position=position, **rule))

        await self.session.flush()
        return row

