"""Client-local view model of one booking / trip."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ridesync.domain.entities import DriverProfile, Location, Place, Route
from ridesync.domain.enums import PaymentMethod, RideStatus, VehicleType
from ridesync.domain.pricing import Fare, FareQuote
from ridesync.domain.promos import PromoCode
from ridesync.domain.vehicles import VEHICLE_CLASSES, VehicleClass


@dataclass
class RideSession:
    # Booking inputs
    pickup: Optional[Place] = None
    dropoff: Optional[Place] = None
    vehicle_class: VehicleClass = field(
        default_factory=lambda: VEHICLE_CLASSES[VehicleType.MOTORCYCLE]
    )
    route: Optional[Route] = None
    quote: Optional[FareQuote] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    scheduled_at: Optional[datetime] = None
    promo: Optional[PromoCode] = None
    surge_multiplier: float = 1.0

    # Mirrored from the authoritative ride record once booked
    active_ride_id: Optional[str] = None
    status: Optional[RideStatus] = None
    driver_id: Optional[str] = None
    driver: Optional[DriverProfile] = None
    driver_location: Optional[Location] = None

    # Local flags
    is_booking: bool = False
    is_finding_driver: bool = False
    last_error: Optional[str] = None

    @property
    def fare(self) -> Optional[Fare]:
        return self.quote.fare if self.quote else None

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled_at is not None

    def clear_booking(self) -> None:
        """Forget the booking inputs; an active ride is left alone."""
        fresh = RideSession()
        for name in (
            "pickup", "dropoff", "vehicle_class", "route", "quote",
            "payment_method", "scheduled_at", "promo", "surge_multiplier",
            "is_booking", "last_error",
        ):
            setattr(self, name, getattr(fresh, name))

    def to_view(self) -> dict[str, Any]:
        """Plain-data snapshot for listeners and the HTTP layer."""
        fare = self.fare
        return {
            "pickup": self.pickup.to_document() if self.pickup else None,
            "dropoff": self.dropoff.to_document() if self.dropoff else None,
            "vehicle_type": self.vehicle_class.type.value,
            "route": self.route.to_document() if self.route else None,
            "fare": fare.to_document() if fare else None,
            "payment_method": self.payment_method.value,
            "scheduled_at": self.scheduled_at,
            "promo_code": self.promo.code if self.promo else None,
            "surge_multiplier": self.surge_multiplier,
            "active_ride_id": self.active_ride_id,
            "status": self.status.value if self.status else None,
            "driver": (
                {
                    "id": self.driver.id,
                    "name": self.driver.name,
                    "phone": self.driver.phone,
                    "vehicle": self.driver.vehicle,
                    "plate_number": self.driver.plate_number,
                    "rating": self.driver.rating,
                }
                if self.driver
                else None
            ),
            "driver_location": (
                self.driver_location.to_document() if self.driver_location else None
            ),
            "is_booking": self.is_booking,
            "is_finding_driver": self.is_finding_driver,
            "last_error": self.last_error,
        }
