"""
Integration tests for the REST API endpoints.

The document store is the in-memory implementation and routing is a fixed
stub, both injected through ``dependency_overrides``.  The surge refresher
is patched out of the lifespan.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ridesync.api.app import create_app
from ridesync.api.dependencies import get_registry, get_routing, get_store
from ridesync.domain.enums import DiscountKind
from ridesync.domain.promos import PromoCode
from ridesync.infrastructure.repositories import PromoRepository
from ridesync.session.registry import SessionRegistry
from tests.conftest import StubRouting

USER = {"X-User-Id": "passenger-1"}
PICKUP = {"address": "Ayala Ave, Makati", "lat": 14.5547, "lng": 121.0244}
DROPOFF = {"address": "BGC High Street", "lat": 14.5509, "lng": 121.0503}


@pytest_asyncio.fixture
async def client(store):
    routing = StubRouting()
    registry = SessionRegistry(store, routing, reset_delay=0.01)
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_routing] = lambda: routing
    app.dependency_overrides[get_registry] = lambda: registry

    with patch("ridesync.workers.surge.start_surge_loop", new_callable=AsyncMock), \
         patch("ridesync.workers.surge.stop_surge_loop", new_callable=AsyncMock):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    registry.close()


async def plan_trip(client: AsyncClient) -> dict:
    await client.put("/api/v1/session/pickup", json=PICKUP, headers=USER)
    await client.put("/api/v1/session/dropoff", json=DROPOFF, headers=USER)
    resp = await client.post("/api/v1/session/fare", headers=USER)
    assert resp.status_code == 200
    return resp.json()


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/v1/admin/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestFares:
    @pytest.mark.asyncio
    async def test_estimate(self, client):
        resp = await client.post(
            "/api/v1/fares/estimate",
            json={
                "vehicle_type": "car",
                "pickup_lat": 14.5547,
                "pickup_lng": 121.0244,
                "dropoff_lat": 14.5509,
                "dropoff_lng": 121.0503,
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["vehicle_type"] == "car"
        assert data["distance_m"] == 5000
        assert data["fare"]["base"] == 45
        assert data["fare"]["total"] >= 118

    @pytest.mark.asyncio
    async def test_estimate_rejects_bad_coordinates(self, client):
        resp = await client.post(
            "/api/v1/fares/estimate",
            json={"pickup_lat": 91, "pickup_lng": 0, "dropoff_lat": 0, "dropoff_lng": 0},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_vehicle_catalogue(self, client):
        resp = await client.get("/api/v1/fares/vehicles")
        assert resp.status_code == 200
        types = [v["type"] for v in resp.json()]
        assert types == ["motorcycle", "car", "van", "delivery", "happy_move", "airport"]


class TestSession:
    @pytest.mark.asyncio
    async def test_requires_a_user(self, client):
        resp = await client.get("/api/v1/session")
        assert resp.status_code == 401
        assert resp.json()["kind"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_plan_and_price(self, client):
        fare = await plan_trip(client)
        assert fare["base"] == 30
        assert fare["distance"] == 35
        assert fare["time"] == 15
        assert fare["total"] >= 80

        view = (await client.get("/api/v1/session", headers=USER)).json()
        assert view["pickup"]["address"] == "Ayala Ave, Makati"
        assert view["vehicle_type"] == "motorcycle"
        assert view["fare"]["total"] == fare["total"]
        assert view["active_ride_id"] is None

    @pytest.mark.asyncio
    async def test_sessions_are_per_passenger(self, client):
        await plan_trip(client)
        other = (await client.get("/api/v1/session", headers={"X-User-Id": "passenger-2"})).json()
        assert other["pickup"] is None
        resp = await client.get("/api/v1/admin/sessions")
        assert resp.json() == {"open_sessions": 2}

    @pytest.mark.asyncio
    async def test_fare_without_locations(self, client):
        resp = await client.post("/api/v1/session/fare", headers=USER)
        assert resp.status_code == 422
        assert resp.json()["kind"] == "incomplete_booking"

    @pytest.mark.asyncio
    async def test_select_vehicle_and_payment(self, client):
        await plan_trip(client)
        resp = await client.put("/api/v1/session/vehicle", json={"vehicle_type": "van"}, headers=USER)
        assert resp.status_code == 200
        assert resp.json()["vehicle_type"] == "van"
        assert resp.json()["fare"]["base"] == 60

        resp = await client.put("/api/v1/session/payment", json={"method": "gcash"}, headers=USER)
        assert resp.json()["payment_method"] == "gcash"

    @pytest.mark.asyncio
    async def test_unknown_vehicle_is_a_validation_error(self, client):
        resp = await client.put("/api/v1/session/vehicle", json={"vehicle_type": "jeepney"}, headers=USER)
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_promo(self, client, store):
        await PromoRepository(store).save(PromoCode("FLAT15", DiscountKind.FIXED, 15))
        fare = await plan_trip(client)

        resp = await client.post("/api/v1/session/promo", json={"code": "flat15"}, headers=USER)
        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == "FLAT15"
        assert body["kind"] == "fixed"
        assert body["fare"]["total"] == fare["total"] - 15

        resp = await client.delete("/api/v1/session/promo", headers=USER)
        assert resp.json()["promo_code"] is None
        assert resp.json()["fare"]["total"] == fare["total"]

    @pytest.mark.asyncio
    async def test_unknown_promo(self, client):
        resp = await client.post("/api/v1/session/promo", json={"code": "NOPE"}, headers=USER)
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Invalid promo code", "kind": "not_found"}

    @pytest.mark.asyncio
    async def test_promo_attempts_are_throttled(self, client):
        for i in range(5):
            resp = await client.post("/api/v1/session/promo", json={"code": f"BAD{i}"}, headers=USER)
            assert resp.status_code == 404
        resp = await client.post("/api/v1/session/promo", json={"code": "BAD5"}, headers=USER)
        assert resp.status_code == 429
        assert resp.json()["kind"] == "rate_limited"
        assert int(resp.headers["Retry-After"]) >= 1


class TestBookingFlow:
    @pytest.mark.asyncio
    async def test_book_track_and_complete(self, client):
        await plan_trip(client)
        resp = await client.post("/api/v1/session/book", headers=USER)
        assert resp.status_code == 201
        ride_id = resp.json()["ride_id"]
        assert resp.json()["status"] == "pending"

        resp = await client.get(f"/api/v1/rides/{ride_id}")
        assert resp.status_code == 200
        assert resp.json()["passenger_id"] == "passenger-1"

        # accepting needs a driver
        resp = await client.patch(f"/api/v1/rides/{ride_id}/status", json={"status": "accepted"})
        assert resp.status_code == 400

        resp = await client.patch(
            f"/api/v1/rides/{ride_id}/status", json={"status": "accepted", "driver_id": "drv_1"}
        )
        assert resp.status_code == 200
        assert resp.json()["driver_id"] == "drv_1"

        view = (await client.get("/api/v1/session", headers=USER)).json()
        assert view["status"] == "accepted"
        assert view["is_finding_driver"] is False

        resp = await client.patch(f"/api/v1/rides/{ride_id}/status", json={"status": "completed"})
        assert resp.status_code == 409
        assert resp.json()["kind"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_book_invalid_dropoff(self, client):
        await client.put("/api/v1/session/pickup", json=PICKUP, headers=USER)
        await client.put("/api/v1/session/dropoff", json={"address": "?", "lat": 0, "lng": 0}, headers=USER)
        await client.post("/api/v1/session/fare", headers=USER)

        resp = await client.post("/api/v1/session/book", headers=USER)
        assert resp.status_code == 422
        assert resp.json()["kind"] == "invalid_coordinates"

        history = await client.get("/api/v1/rides/history", headers=USER)
        assert history.json() == []

    @pytest.mark.asyncio
    async def test_cancel(self, client):
        await plan_trip(client)
        ride_id = (await client.post("/api/v1/session/book", headers=USER)).json()["ride_id"]

        resp = await client.post("/api/v1/session/cancel", json={"reason": "Wrong pickup"}, headers=USER)
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

        history = (await client.get("/api/v1/rides/history", headers=USER)).json()
        assert [r["id"] for r in history] == [ride_id]
        assert history[0]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_rate_completed_ride(self, client):
        await plan_trip(client)
        ride_id = (await client.post("/api/v1/session/book", headers=USER)).json()["ride_id"]
        url = f"/api/v1/rides/{ride_id}/status"
        await client.patch(url, json={"status": "accepted", "driver_id": "drv_1"})
        for status in ("arrived", "in_progress", "completed"):
            assert (await client.patch(url, json={"status": status})).status_code == 200
        await asyncio.sleep(0.05)

        resp = await client.post("/api/v1/session/rate", json={"stars": 7, "ride_id": ride_id}, headers=USER)
        assert resp.status_code == 400
        assert resp.json()["kind"] == "invalid_input"

        other = {"X-User-Id": "passenger-2"}
        resp = await client.post("/api/v1/session/rate", json={"stars": 1, "ride_id": ride_id}, headers=other)
        assert resp.status_code == 404

        resp = await client.post("/api/v1/session/rate", json={"stars": 4, "ride_id": ride_id}, headers=USER)
        assert resp.status_code == 204

        history = (await client.get("/api/v1/rides/history", headers=USER)).json()
        assert history[0]["status"] == "completed"
        assert history[0]["rating"] == 4

    @pytest.mark.asyncio
    async def test_cancel_without_ride(self, client):
        resp = await client.post("/api/v1/session/cancel", headers=USER)
        assert resp.status_code == 409
        assert resp.json()["kind"] == "no_active_ride"

    @pytest.mark.asyncio
    async def test_unknown_ride(self, client):
        resp = await client.get("/api/v1/rides/ride_missing")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_reset(self, client):
        await plan_trip(client)
        resp = await client.post("/api/v1/session/reset", headers=USER)
        assert resp.json()["pickup"] is None


class TestDrivers:
    @pytest.mark.asyncio
    async def test_location_feed_reaches_the_passenger(self, client, store):
        await store.create("drivers", "drv_1", {"firstName": "Juan", "lastName": "Dela Cruz"})
        await plan_trip(client)
        ride_id = (await client.post("/api/v1/session/book", headers=USER)).json()["ride_id"]
        await client.patch(
            f"/api/v1/rides/{ride_id}/status", json={"status": "accepted", "driver_id": "drv_1"}
        )

        resp = await client.put("/api/v1/drivers/drv_1/location", json={"lat": 14.556, "lng": 121.03})
        assert resp.status_code == 204

        view = (await client.get("/api/v1/session", headers=USER)).json()
        assert view["driver"]["name"] == "Juan Dela Cruz"
        assert view["driver_location"] == {"lat": 14.556, "lng": 121.03}

    @pytest.mark.asyncio
    async def test_unknown_driver(self, client):
        resp = await client.put("/api/v1/drivers/ghost/location", json={"lat": 14.5, "lng": 121.0})
        assert resp.status_code == 404
