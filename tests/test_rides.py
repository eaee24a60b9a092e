"""Integration tests for booking, fare proposals, status steps and cancellation."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from ridecore.domain.enums import (
    CancelActor,
    DriverStatus,
    NegotiationStatus,
    OfferDecision,
    RideStatus,
)
from ridecore.infrastructure.models import CouponModel, DriverModel, PassengerModel


async def scalar(session, column, where):
    result = await session.execute(select(column).where(where))
    return result.scalar_one()


async def accepted_ride(service, coordinator, world, make_request, now) -> int:
    ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
    result = await coordinator.respond_to_offer(ride_id, world.near, OfferDecision.ACCEPT, now)
    assert result.success
    return ride_id


class TestRequestRide:
    @pytest.mark.asyncio
    async def test_fare_is_quoted_on_the_server(self, service, world, make_request, now):
        result = await service.request_ride(make_request(world.alice), now)
        ride = result.ride
        assert ride.fare_breakdown["total"] == 17.5
        assert ride.fare_breakdown["base_fare"] == 3.5
        assert ride.agreed_fare == ride.reference_fare == 17.5
        assert ride.requested_at == now
        assert ride.is_rateable is False

    @pytest.mark.asyncio
    async def test_idempotency_key_returns_existing_ride(self, service, world, make_request, now):
        first = await service.request_ride(
            make_request(world.alice, idempotency_key="abc-123"), now
        )
        second = await service.request_ride(
            make_request(world.alice, idempotency_key="abc-123"), now
        )
        assert second.success
        assert second.extra["duplicate"] is True
        assert second.ride.id == first.ride.id

    @pytest.mark.asyncio
    async def test_idempotency_key_is_scoped_to_the_passenger(
        self, service, world, make_request, now
    ):
        await service.request_ride(make_request(world.alice, idempotency_key="k1"), now)
        result = await service.request_ride(make_request(world.bob, idempotency_key="k1"), now)
        assert not result.success
        assert result.error_code == "ride_unavailable"
        assert result.ride is None

    @pytest.mark.asyncio
    async def test_same_key_inserted_concurrently_replays_the_ride(
        self, service, db_session, world, make_request, now, monkeypatch
    ):
        first = await service.request_ride(make_request(world.alice, idempotency_key="k1"), now)
        first_id = first.ride.id
        await service.cancel_ride(
            first_id, CancelActor.PASSENGER, world.alice, "NO_LONGER_NEEDED", now
        )
        await db_session.commit()

        # The first lookup misses, as it would for a request racing the insert.
        lookup = service.rides.get_by_idempotency_key
        calls = []

        async def racing_lookup(key):
            calls.append(key)
            return None if len(calls) == 1 else await lookup(key)

        monkeypatch.setattr(service.rides, "get_by_idempotency_key", racing_lookup)
        result = await service.request_ride(
            make_request(world.alice, idempotency_key="k1"), now
        )
        assert result.success
        assert result.extra["duplicate"] is True
        assert result.ride.id == first_id
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_unknown_passenger(self, service, world, make_request, now):
        result = await service.request_ride(make_request(999), now)
        assert result.error_code == "validation_error"

    @pytest.mark.asyncio
    async def test_one_active_ride_per_passenger(self, service, world, make_request, now):
        await service.request_ride(make_request(world.alice), now)
        result = await service.request_ride(make_request(world.alice), now)
        assert result.error_code == "ride_unavailable"

    @pytest.mark.asyncio
    async def test_negative_distance(self, service, world, make_request, now):
        result = await service.request_ride(make_request(world.alice, distance_km=-2.0), now)
        assert result.error_code == "validation_error"

    @pytest.mark.asyncio
    async def test_coupon_use_is_consumed_once(
        self, service, db_session, world, make_request, now
    ):
        first = await service.request_ride(
            make_request(world.alice, coupon_code="WELCOME10"), now
        )
        assert first.ride.coupon_code == "WELCOME10"
        assert first.ride.final_fare == 16.0
        assert first.ride.reference_fare == 17.5
        assert await scalar(
            db_session, CouponModel.times_used, CouponModel.code == "WELCOME10"
        ) == 1

        second = await service.request_ride(
            make_request(world.bob, coupon_code="WELCOME10"), now
        )
        assert second.ride.coupon_code is None
        assert second.ride.final_fare == 17.5
        assert second.ride.fare_breakdown["coupon_reason"] == "usage_limit_reached"

    @pytest.mark.asyncio
    async def test_disabled_coupon_charges_full_fare(self, service, world, make_request, now):
        result = await service.request_ride(make_request(world.alice, coupon_code="OFF"), now)
        assert result.success
        assert result.ride.final_fare == 17.5
        assert result.ride.fare_breakdown["coupon_reason"] == "disabled"


class TestProposeFare:
    @pytest.mark.asyncio
    async def test_counter_then_accept(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id

        result = await service.propose_fare(ride_id, world.alice, 15.0, now)
        assert result.success
        assert result.extra["decision"] == NegotiationStatus.COUNTER_OFFERED.value
        assert result.extra["amount"] == 16.0
        assert result.ride.counter_fare == 16.0
        assert result.ride.negotiation_expires_at == now + timedelta(seconds=60)

        result = await service.propose_fare(ride_id, world.alice, 16.0, now)
        assert result.extra["decision"] == NegotiationStatus.ACCEPTED.value
        assert result.ride.negotiation_status == NegotiationStatus.ACCEPTED
        assert result.ride.agreed_fare == 16.0
        assert result.ride.final_fare == 16.0
        assert result.ride.negotiation_rounds == 1

    @pytest.mark.asyncio
    async def test_agreed_fare_is_on_the_price_grid(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        result = await service.propose_fare(ride_id, world.alice, 16.3, now)
        assert result.extra["decision"] == NegotiationStatus.ACCEPTED.value
        assert result.ride.agreed_fare == 16.5
        assert result.ride.final_fare == 16.5
        assert result.ride.agreed_fare % 0.5 == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0.0, -5.0])
    async def test_non_positive_proposal_is_refused(
        self, service, world, make_request, now, amount
    ):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        result = await service.propose_fare(ride_id, world.alice, amount, now)
        assert result.error_code == "validation_error"
        assert result.ride.negotiation_rounds == 0

    @pytest.mark.asyncio
    async def test_full_fare_is_accepted(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        result = await service.propose_fare(ride_id, world.alice, 17.5, now)
        assert result.extra["decision"] == NegotiationStatus.ACCEPTED.value

    @pytest.mark.asyncio
    async def test_accepted_fare_keeps_coupon(self, service, world, make_request, now):
        ride_id = (
            await service.request_ride(make_request(world.alice, coupon_code="WELCOME10"), now)
        ).ride.id
        result = await service.propose_fare(ride_id, world.alice, 16.0, now)
        assert result.ride.agreed_fare == 16.0
        # 16.00 - 10% = 14.40
        assert result.ride.final_fare == 14.5

    @pytest.mark.asyncio
    async def test_below_floor_is_refused(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        result = await service.propose_fare(ride_id, world.alice, 14.0, now)
        assert result.error_code == "validation_error"
        assert result.ride.negotiation_rounds == 0

    @pytest.mark.asyncio
    async def test_lapsed_counter_closes_negotiation(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        await service.propose_fare(ride_id, world.alice, 15.0, now)

        result = await service.propose_fare(
            ride_id, world.alice, 16.0, now + timedelta(seconds=61)
        )
        assert result.error_code == "validation_error"

    @pytest.mark.asyncio
    async def test_other_passenger_cannot_propose(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        result = await service.propose_fare(ride_id, world.bob, 17.0, now)
        assert result.error_code == "invalid_transition"

    @pytest.mark.asyncio
    async def test_no_proposals_after_acceptance(
        self, service, coordinator, world, make_request, now
    ):
        ride_id = await accepted_ride(service, coordinator, world, make_request, now)
        result = await service.propose_fare(ride_id, world.alice, 17.0, now)
        assert result.error_code == "invalid_transition"

    @pytest.mark.asyncio
    async def test_unknown_ride(self, service, world, now):
        result = await service.propose_fare(999, world.alice, 17.0, now)
        assert result.error_code == "ride_not_found"


class TestAdvanceRideStatus:
    @pytest.mark.asyncio
    async def test_full_trip(self, service, coordinator, db_session, world, make_request, now):
        ride_id = await accepted_ride(service, coordinator, world, make_request, now)

        for step, status in enumerate(
            (RideStatus.ARRIVED, RideStatus.IN_PROGRESS, RideStatus.COMPLETED), start=1
        ):
            result = await service.advance_ride_status(
                ride_id, world.near, status, now + timedelta(minutes=step)
            )
            assert result.success, result.message
            assert result.ride.status == status

        ride = result.ride
        assert ride.arrived_at == now + timedelta(minutes=1)
        assert ride.started_at == now + timedelta(minutes=2)
        assert ride.completed_at == now + timedelta(minutes=3)
        assert ride.is_rateable is True
        assert await scalar(
            db_session, DriverModel.status, DriverModel.id == world.near
        ) == DriverStatus.AVAILABLE
        assert await scalar(
            db_session, PassengerModel.completed_rides, PassengerModel.id == world.alice
        ) == 1

    @pytest.mark.asyncio
    async def test_other_driver_is_refused(self, service, coordinator, world, make_request, now):
        ride_id = await accepted_ride(service, coordinator, world, make_request, now)
        result = await service.advance_ride_status(
            ride_id, world.second, RideStatus.ARRIVED, now
        )
        assert result.error_code == "invalid_transition"

    @pytest.mark.asyncio
    async def test_steps_cannot_be_skipped(self, service, coordinator, world, make_request, now):
        ride_id = await accepted_ride(service, coordinator, world, make_request, now)
        result = await service.advance_ride_status(
            ride_id, world.near, RideStatus.COMPLETED, now
        )
        assert result.error_code == "invalid_transition"
        assert result.ride.status == RideStatus.ACCEPTED


class TestCancelRide:
    @pytest.mark.asyncio
    async def test_passenger_cancels_while_searching(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id

        result = await service.cancel_ride(
            ride_id, CancelActor.PASSENGER, world.alice, "NO_LONGER_NEEDED", now
        )
        assert result.success
        ride = result.ride
        assert ride.status == RideStatus.CANCELLED
        assert ride.cancelled_by == CancelActor.PASSENGER
        assert ride.cancellation_reason == "NO_LONGER_NEEDED"
        assert ride.offered_to_id is None
        assert result.extra["released_driver_id"] is None

        again = await service.cancel_ride(
            ride_id, CancelActor.PASSENGER, world.alice, "NO_LONGER_NEEDED", now
        )
        assert again.success
        assert again.extra["already_cancelled"] is True

    @pytest.mark.asyncio
    async def test_cancel_closes_a_pending_counter(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        await service.propose_fare(ride_id, world.alice, 15.0, now)

        result = await service.cancel_ride(
            ride_id, CancelActor.PASSENGER, world.alice, "NO_LONGER_NEEDED", now
        )
        ride = result.ride
        assert ride.status == RideStatus.CANCELLED
        assert ride.negotiation_status == NegotiationStatus.REJECTED
        assert ride.counter_fare is None
        assert ride.negotiation_expires_at is None

    @pytest.mark.asyncio
    async def test_cancelled_passenger_can_book_again(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        await service.cancel_ride(
            ride_id, CancelActor.PASSENGER, world.alice, "NO_LONGER_NEEDED", now
        )
        result = await service.request_ride(make_request(world.alice), now)
        assert result.success
        assert result.ride.id != ride_id

    @pytest.mark.asyncio
    async def test_reason_code_is_required(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        result = await service.cancel_ride(ride_id, CancelActor.PASSENGER, world.alice, None, now)
        assert result.error_code == "validation_error"

    @pytest.mark.asyncio
    async def test_driver_cancel_releases_driver(
        self, service, coordinator, db_session, world, make_request, now
    ):
        ride_id = await accepted_ride(service, coordinator, world, make_request, now)

        result = await service.cancel_ride(
            ride_id, CancelActor.DRIVER, world.near, "PASSENGER_NO_SHOW", now
        )
        assert result.success
        assert result.extra["released_driver_id"] == world.near
        assert await scalar(
            db_session, DriverModel.status, DriverModel.id == world.near
        ) == DriverStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_in_progress_cannot_be_cancelled(
        self, service, coordinator, world, make_request, now
    ):
        ride_id = await accepted_ride(service, coordinator, world, make_request, now)
        await service.advance_ride_status(ride_id, world.near, RideStatus.ARRIVED, now)
        await service.advance_ride_status(ride_id, world.near, RideStatus.IN_PROGRESS, now)

        result = await service.cancel_ride(
            ride_id, CancelActor.PASSENGER, world.alice, "NO_LONGER_NEEDED", now
        )
        assert result.error_code == "invalid_transition"

    @pytest.mark.asyncio
    async def test_other_passenger_cannot_cancel(self, service, world, make_request, now):
        ride_id = (await service.request_ride(make_request(world.alice), now)).ride.id
        result = await service.cancel_ride(
            ride_id, CancelActor.PASSENGER, world.bob, "NO_LONGER_NEEDED", now
        )
        assert result.error_code == "invalid_transition"
