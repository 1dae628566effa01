"""
Routing / directions providers.

``OSRMRouting`` asks an OSRM server for road distance and duration.  When
it is not configured or fails, ``FallbackRouting`` switches to
``HaversineRouting``: straight-line distance at an assumed average speed.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from ridesync.domain.distance import haversine_m, travel_seconds
from ridesync.domain.entities import Location, Route

logger = logging.getLogger(__name__)


class RoutingError(Exception):
    """The routing service could not produce a route."""


class RoutingProvider(ABC):
    @abstractmethod
    async def directions(self, origin: Location, destination: Location) -> Route: ...


class HaversineRouting(RoutingProvider):
    def __init__(self, average_speed_kmh: float = 30.0):
        self.average_speed_kmh = average_speed_kmh

    async def directions(self, origin: Location, destination: Location) -> Route:
        distance = haversine_m(origin, destination)
        duration = travel_seconds(distance, self.average_speed_kmh)
        return Route(distance_m=round(distance), duration_s=round(duration))


class OSRMRouting(RoutingProvider):
    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def directions(self, origin: Location, destination: Location) -> Route:
        url = (
            f"{self.base_url}/route/v1/driving/"
            f"{origin.longitude},{origin.latitude};"
            f"{destination.longitude},{destination.latitude}"
        )
        params = {"overview": "full", "geometries": "polyline"}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise RoutingError(f"Request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise RoutingError(f"Network error: {e}") from e

        if response.status_code >= 500:
            raise RoutingError(f"OSRM server error: {response.status_code}")

        data = response.json()
        if data.get("code") != "Ok" or not data.get("routes"):
            raise RoutingError(f"No route found ({data.get('code')})")

        route = data["routes"][0]
        return Route(
            distance_m=float(route["distance"]),
            duration_s=float(route["duration"]),
            polyline=route.get("geometry", ""),
        )


class FallbackRouting(RoutingProvider):
    def __init__(self, primary: RoutingProvider, fallback: RoutingProvider):
        self.primary = primary
        self.fallback = fallback

    async def directions(self, origin: Location, destination: Location) -> Route:
        try:
            return await self.primary.directions(origin, destination)
        except (RoutingError, KeyError, ValueError) as e:
            logger.warning("Routing failed (%s); using straight-line estimate", e)
            return await self.fallback.directions(origin, destination)


def build_routing(
    routing_url: str | None, timeout: float, average_speed_kmh: float
) -> RoutingProvider:
    haversine = HaversineRouting(average_speed_kmh)
    if not routing_url:
        return haversine
    return FallbackRouting(OSRMRouting(routing_url, timeout), haversine)
