"""
API integration tests using httpx AsyncClient + SQLite.

The offer sweeper is patched out and ``get_db`` is overridden with the
per-test in-memory database.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

RIDE_TIME = "2026-03-10T15:00:00Z"  # 10:00 in Lima, off-peak


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, world):
    """AsyncClient backed by the seeded SQLite database."""
    with (
        patch(
            "ridecore.workers.offer_sweeper.start_sweeper_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "ridecore.workers.offer_sweeper.stop_sweeper_loop",
            new_callable=AsyncMock,
        ),
    ):
        # DB session dependency
        async def _test_db():
            async with session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        from ridecore.api.app import create_app
        from ridecore.api.dependencies import get_db
        from ridecore.api.middleware import limiter

        limiter.reset()
        app = create_app()
        app.dependency_overrides[get_db] = _test_db

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


def ride_payload(passenger_id: int, **overrides) -> dict:
    payload = {
        "passenger_id": passenger_id,
        "pickup_lat": -12.0464,
        "pickup_lng": -77.0428,
        "dropoff_lat": -12.1200,
        "dropoff_lng": -77.0300,
        "pickup_address": "Plaza de Armas",
        "dropoff_address": "Miraflores",
        "distance_km": 10.0,
        "duration_minutes": 20.0,
        "service_type": "economy",
        "ride_timestamp": RIDE_TIME,
    }
    payload.update(overrides)
    return payload


async def book(client: AsyncClient, passenger_id: int, **overrides) -> dict:
    resp = await client.post("/api/v1/rides", json=ride_payload(passenger_id, **overrides))
    assert resp.status_code == 202, resp.text
    return resp.json()


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_quote(client: AsyncClient):
    resp = await client.post(
        "/api/v1/quotes",
        json={
            "distance_km": 10.0,
            "duration_minutes": 20.0,
            "service_type": "comfort",
            "ride_timestamp": RIDE_TIME,
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["subtotal"] == 22.75
    assert data["total"] == 23.0
    assert data["is_peak"] is False
    assert data["pricing_source"] == "defaults"


@pytest.mark.asyncio
async def test_quote_does_not_consume_coupon(client: AsyncClient, world):
    body = {
        "distance_km": 10.0,
        "duration_minutes": 20.0,
        "service_type": "economy",
        "ride_timestamp": RIDE_TIME,
        "coupon_code": "WELCOME10",
    }
    for _ in range(2):
        resp = await client.post("/api/v1/quotes", json=body)
        assert resp.json()["total"] == 16.0
        assert resp.json()["coupon_code"] == "WELCOME10"


@pytest.mark.asyncio
async def test_quote_rejects_negative_distance(client: AsyncClient):
    resp = await client.post(
        "/api/v1/quotes",
        json={"distance_km": -1, "duration_minutes": 5, "service_type": "economy"},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_ride_returns_202(client: AsyncClient, world):
    data = await book(client, world.alice)
    assert data["ride"]["status"] == "searching"
    assert data["ride"]["offered_to_id"] == world.near
    assert data["ride"]["final_fare"] == 17.5
    assert data["details"]["offered_to"] == world.near


@pytest.mark.asyncio
async def test_idempotency_key(client: AsyncClient, world):
    first = await book(client, world.alice, idempotency_key="retry-1")
    second = await book(client, world.alice, idempotency_key="retry-1")
    assert second["ride"]["id"] == first["ride"]["id"]
    assert second["details"]["duplicate"] is True


@pytest.mark.asyncio
async def test_second_active_ride_conflicts(client: AsyncClient, world):
    await book(client, world.alice)
    resp = await client.post("/api/v1/rides", json=ride_payload(world.alice))
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "ride_unavailable"


@pytest.mark.asyncio
async def test_get_ride(client: AsyncClient, world):
    ride_id = (await book(client, world.alice))["ride"]["id"]
    resp = await client.get(f"/api/v1/rides/{ride_id}")
    assert resp.status_code == 200
    assert resp.json()["id"] == ride_id
    assert resp.json()["fare_breakdown"]["total"] == 17.5


@pytest.mark.asyncio
async def test_get_ride_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/rides/99999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_proposal_flow(client: AsyncClient, world):
    ride_id = (await book(client, world.alice))["ride"]["id"]

    resp = await client.post(
        f"/api/v1/rides/{ride_id}/proposals",
        json={"passenger_id": world.alice, "amount": 15.0},
    )
    assert resp.status_code == 200
    assert resp.json()["details"]["decision"] == "counter-offered"
    assert resp.json()["details"]["amount"] == 16.0

    resp = await client.post(
        f"/api/v1/rides/{ride_id}/proposals",
        json={"passenger_id": world.alice, "amount": 16.0},
    )
    ride = resp.json()["ride"]
    assert ride["negotiation_status"] == "accepted"
    assert ride["agreed_fare"] == 16.0
    assert ride["final_fare"] == 16.0


@pytest.mark.asyncio
async def test_proposal_outside_window(client: AsyncClient, world):
    ride_id = (await book(client, world.alice))["ride"]["id"]
    resp = await client.post(
        f"/api/v1/rides/{ride_id}/proposals",
        json={"passenger_id": world.alice, "amount": 30.0},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "validation_error"


@pytest.mark.asyncio
async def test_full_lifecycle(client: AsyncClient, world):
    ride_id = (await book(client, world.alice))["ride"]["id"]

    resp = await client.post(
        f"/api/v1/rides/{ride_id}/offer-response",
        json={"driver_id": world.near, "decision": "accept"},
    )
    assert resp.status_code == 200
    assert resp.json()["ride"]["status"] == "accepted"

    resp = await client.get(f"/api/v1/drivers/{world.near}")
    assert resp.json()["status"] == "on-ride"

    for status in ("arrived", "in-progress", "completed"):
        resp = await client.post(
            f"/api/v1/rides/{ride_id}/status",
            json={"driver_id": world.near, "status": status},
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["ride"]["status"] == status

    assert resp.json()["ride"]["is_rateable"] is True
    resp = await client.get(f"/api/v1/drivers/{world.near}")
    assert resp.json()["status"] == "available"


@pytest.mark.asyncio
async def test_skipping_a_status_conflicts(client: AsyncClient, world):
    ride_id = (await book(client, world.alice))["ride"]["id"]
    await client.post(
        f"/api/v1/rides/{ride_id}/offer-response",
        json={"driver_id": world.near, "decision": "accept"},
    )
    resp = await client.post(
        f"/api/v1/rides/{ride_id}/status",
        json={"driver_id": world.near, "status": "completed"},
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "invalid_transition"


@pytest.mark.asyncio
async def test_counter_offer_flow(client: AsyncClient, world):
    ride_id = (await book(client, world.alice))["ride"]["id"]

    resp = await client.post(
        f"/api/v1/rides/{ride_id}/offer-response",
        json={"driver_id": world.near, "decision": "counter", "amount": 20.0},
    )
    assert resp.status_code == 200
    assert resp.json()["ride"]["status"] == "counter-offered"
    assert resp.json()["ride"]["driver_counter_fare"] == 20.0

    resp = await client.post(
        f"/api/v1/rides/{ride_id}/counter-offer-response",
        json={"passenger_id": world.alice, "accept": True},
    )
    assert resp.status_code == 200
    assert resp.json()["ride"]["status"] == "accepted"
    assert resp.json()["ride"]["final_fare"] == 20.0


@pytest.mark.asyncio
async def test_reject_then_exhausted_then_dispatch(client: AsyncClient, world):
    ride_id = (await book(client, world.alice))["ride"]["id"]
    for driver_id in (world.near, world.second):
        resp = await client.post(
            f"/api/v1/rides/{ride_id}/offer-response",
            json={"driver_id": driver_id, "decision": "reject"},
        )
        assert resp.status_code == 200

    assert resp.json()["details"]["search_exhausted"] is True

    resp = await client.post(f"/api/v1/rides/{ride_id}/dispatch")
    assert resp.status_code == 200
    assert resp.json()["details"]["search_exhausted"] is True
    assert resp.json()["ride"]["search_exhausted"] is True


@pytest.mark.asyncio
async def test_cancel_ride(client: AsyncClient, world):
    ride_id = (await book(client, world.alice))["ride"]["id"]

    resp = await client.post(
        f"/api/v1/rides/{ride_id}/cancel",
        json={"actor": "passenger", "actor_id": world.alice},
    )
    assert resp.status_code == 422

    body = {"actor": "passenger", "actor_id": world.alice, "reason_code": "NO_LONGER_NEEDED"}
    resp = await client.post(f"/api/v1/rides/{ride_id}/cancel", json=body)
    assert resp.status_code == 200
    assert resp.json()["ride"]["status"] == "cancelled"

    resp = await client.post(f"/api/v1/rides/{ride_id}/cancel", json=body)
    assert resp.status_code == 200
    assert resp.json()["details"]["already_cancelled"] is True


@pytest.mark.asyncio
async def test_driver_availability(client: AsyncClient, world):
    resp = await client.patch(
        f"/api/v1/drivers/{world.offline}/availability", json={"available": True}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "available"

    resp = await client.patch(
        f"/api/v1/drivers/{world.offline}/availability", json={"available": True}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_on_ride_driver_cannot_go_offline(client: AsyncClient, world):
    ride_id = (await book(client, world.alice))["ride"]["id"]
    await client.post(
        f"/api/v1/rides/{ride_id}/offer-response",
        json={"driver_id": world.near, "decision": "accept"},
    )
    resp = await client.patch(
        f"/api/v1/drivers/{world.near}/availability", json={"available": False}
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_driver_location(client: AsyncClient, world):
    resp = await client.patch(
        f"/api/v1/drivers/{world.far}/location", json={"lat": -12.0466, "lng": -77.0430}
    )
    assert resp.status_code == 200
    assert resp.json()["lat"] == -12.0466
    assert resp.json()["h3_cell"]


@pytest.mark.asyncio
async def test_unknown_driver(client: AsyncClient):
    resp = await client.get("/api/v1/drivers/99999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_pricing_settings_roundtrip(client: AsyncClient):
    resp = await client.get("/api/v1/admin/pricing")
    assert resp.status_code == 200
    assert resp.json()["source"] == "defaults"

    body = {
        "base_fare": 4.0,
        "per_km_fare": 1.0,
        "per_minute_fare": 0.2,
        "negotiation_range_percent": 10.0,
        "service_multipliers": {"economy": 1.0, "comfort": 1.3, "exclusive": 1.8},
        "peak_time_rules": [
            {"name": "Evening rush", "start_time": "16:00", "end_time": "19:00",
             "surcharge_percent": 25.0},
        ],
        "special_fare_rules": [
            {"name": "Fiestas Patrias", "start_date": "2026-07-28",
             "end_date": "2026-07-29", "surcharge_percent": 20.0},
        ],
    }
    resp = await client.put("/api/v1/admin/pricing", json=body)
    assert resp.status_code == 200
    assert resp.json()["source"] == "database"
    assert resp.json()["special_fare_rules"][0]["name"] == "Fiestas Patrias"

    resp = await client.post(
        "/api/v1/quotes",
        json={
            "distance_km": 10.0,
            "duration_minutes": 20.0,
            "service_type": "economy",
            "ride_timestamp": RIDE_TIME,
        },
    )
    assert resp.json()["total"] == 18.0
    assert resp.json()["pricing_source"] == "database"


@pytest.mark.asyncio
async def test_pricing_rejects_malformed_time(client: AsyncClient):
    body = {
        "base_fare": 3.5,
        "per_km_fare": 1.0,
        "per_minute_fare": 0.2,
        "service_multipliers": {"economy": 1.0},
        "peak_time_rules": [
            {"name": "Bad", "start_time": "25:00", "end_time": "03:00",
             "surcharge_percent": 10.0},
        ],
    }
    resp = await client.put("/api/v1/admin/pricing", json=body)
    assert resp.status_code == 422
