"""
Distance calculation using the Haversine formula.

Assumption
----------
Great-circle distance is only a fallback for when the routing service
(OSRM) is unavailable or fails.  Everything is computed in **meters**;
``haversine_km`` converts at the boundary.

Complexity: O(1) per call.
"""

import math

from .entities import Location

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(a: Location, b: Location) -> float:
    """Return the great-circle distance in **meters** between two points."""
    lat1_r, lat2_r = math.radians(a.latitude), math.radians(b.latitude)
    dlat = math.radians(b.latitude - a.latitude)
    dlng = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


def haversine_km(a: Location, b: Location) -> float:
    return haversine_m(a, b) / 1000


def travel_seconds(distance_m: float, average_speed_kmh: float) -> float:
    """Synthesize a duration for *distance_m* at a constant average speed."""
    return distance_m / 1000 / average_speed_kmh * 3600
