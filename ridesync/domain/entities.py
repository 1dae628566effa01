"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (see ``RIDE_TRANSITIONS``).  The passenger side never drives these; the
  dispatch route does, and the passenger mirrors whatever the store says.
- ``Location.is_plausible`` is the geolocation sanity check used before a
  ride record is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import RIDE_TRANSITIONS, RideStatus, VehicleType
from .errors import InvalidStateTransition


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp (datetime, ISO string, epoch seconds)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    def is_plausible(self) -> bool:
        """In range and not the (0, 0) "null island" placeholder."""
        if not (-90 <= self.latitude <= 90 and -180 <= self.longitude <= 180):
            return False
        return not (self.latitude == 0 and self.longitude == 0)

    def to_document(self) -> dict[str, float]:
        return {"lat": self.latitude, "lng": self.longitude}

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> Location:
        return cls(float(data["lat"]), float(data["lng"]))


@dataclass(frozen=True)
class Place:
    address: str
    location: Location
    details: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "address": self.address,
            "coordinates": self.location.to_document(),
        }
        if self.details:
            doc["details"] = self.details
        return doc


@dataclass(frozen=True)
class Route:
    distance_m: float
    duration_s: float
    polyline: str = ""

    def to_document(self) -> dict[str, Any]:
        return {
            "distance": self.distance_m,
            "duration": self.duration_s,
            "polyline": self.polyline,
        }


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    """Mirror of the authoritative ride record."""

    id: str
    passenger_id: str = ""
    vehicle_type: VehicleType = VehicleType.MOTORCYCLE
    status: RideStatus = RideStatus.PENDING
    driver_id: Optional[str] = None
    rating: Optional[int] = None
    review: Optional[str] = None
    scheduled_at: Optional[datetime] = None

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> Ride:
        """Build from a store document.  Raises ``ValueError``/``KeyError``
        on malformed payloads."""
        return cls(
            id=str(data["id"]),
            passenger_id=str(data.get("passengerId", "")),
            vehicle_type=VehicleType(data.get("vehicleType", VehicleType.MOTORCYCLE)),
            status=RideStatus(data["status"]),
            driver_id=data.get("driverId") or None,
            rating=data.get("rating"),
            review=data.get("review"),
            scheduled_at=parse_timestamp(data.get("scheduledAt")),
        )


@dataclass
class DriverProfile:
    id: str
    name: str = ""
    phone: Optional[str] = None
    vehicle: Optional[str] = None
    plate_number: Optional[str] = None
    rating: Optional[float] = None
    location: Optional[Location] = None

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> DriverProfile:
        first = data.get("firstName", "")
        last = data.get("lastName", "")
        vehicle = data.get("vehicle") or {}
        raw_location = data.get("currentLocation")
        return cls(
            id=str(data["id"]),
            name=" ".join(p for p in (first, last) if p) or data.get("name", ""),
            phone=data.get("phone"),
            vehicle=" ".join(
                str(vehicle[k]) for k in ("color", "make", "model") if vehicle.get(k)
            )
            or None,
            plate_number=vehicle.get("plateNumber"),
            rating=data.get("rating"),
            location=Location.from_document(raw_location) if raw_location else None,
        )
