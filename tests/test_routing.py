"""Tests for the routing providers (OSRM over a mocked transport)."""

from __future__ import annotations

import httpx
import pytest

from ridesync.domain.entities import Location
from ridesync.infrastructure.routing import (
    FallbackRouting,
    HaversineRouting,
    OSRMRouting,
    RoutingError,
    build_routing,
)

MAKATI = Location(14.5547, 121.0244)
BGC = Location(14.5509, 121.0503)


def osrm(handler) -> OSRMRouting:
    return OSRMRouting("http://osrm.test/", timeout=1.0, transport=httpx.MockTransport(handler))


class TestHaversineRouting:
    @pytest.mark.asyncio
    async def test_duration_from_average_speed(self):
        route = await HaversineRouting(average_speed_kmh=30).directions(MAKATI, BGC)
        assert isinstance(route.distance_m, int)
        assert route.duration_s == round(route.distance_m / 1000 / 30 * 3600)
        assert route.polyline == ""


class TestOSRMRouting:
    @pytest.mark.asyncio
    async def test_parses_first_route(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            return httpx.Response(
                200,
                json={
                    "code": "Ok",
                    "routes": [{"distance": 3912.4, "duration": 611.0, "geometry": "abc"}],
                },
            )

        route = await osrm(handler).directions(MAKATI, BGC)
        assert seen["path"] == "/route/v1/driving/121.0244,14.5547;121.0503,14.5509"
        assert route.distance_m == 3912.4
        assert route.duration_s == 611.0
        assert route.polyline == "abc"

    @pytest.mark.asyncio
    async def test_no_route(self):
        def handler(request):
            return httpx.Response(400, json={"code": "NoRoute", "routes": []})

        with pytest.raises(RoutingError):
            await osrm(handler).directions(MAKATI, BGC)

    @pytest.mark.asyncio
    async def test_server_error(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(RoutingError):
            await osrm(handler).directions(MAKATI, BGC)

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RoutingError):
            await osrm(handler).directions(MAKATI, BGC)


class TestFallback:
    @pytest.mark.asyncio
    async def test_falls_back_to_straight_line(self):
        def handler(request):
            return httpx.Response(503)

        routing = FallbackRouting(osrm(handler), HaversineRouting(30))
        route = await routing.directions(MAKATI, BGC)
        expected = await HaversineRouting(30).directions(MAKATI, BGC)
        assert route == expected

    @pytest.mark.asyncio
    async def test_malformed_payload_falls_back(self):
        def handler(request):
            return httpx.Response(200, json={"code": "Ok", "routes": [{}]})

        routing = FallbackRouting(osrm(handler), HaversineRouting(30))
        route = await routing.directions(MAKATI, BGC)
        assert route.distance_m > 0

    def test_build_without_url_is_haversine_only(self):
        assert isinstance(build_routing(None, 5.0, 30.0), HaversineRouting)

    def test_build_with_url_wraps_osrm(self):
        routing = build_routing("http://osrm.test", 5.0, 30.0)
        assert isinstance(routing, FallbackRouting)
        assert isinstance(routing.primary, OSRMRouting)
