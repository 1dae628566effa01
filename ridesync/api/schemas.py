"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ridesync.domain.enums import PaymentMethod, RideStatus, VehicleType
from ridesync.domain.entities import parse_timestamp
from ridesync.domain.pricing import Fare


# ── Requests ──────────────────────────────────────────────────────────


class PlaceRequest(BaseModel):
    address: str = Field("", max_length=300)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class VehicleRequest(BaseModel):
    vehicle_type: VehicleType


class PaymentRequest(BaseModel):
    method: PaymentMethod


class ScheduleRequest(BaseModel):
    scheduled_at: Optional[datetime] = Field(
        None, description="Omit or null to book for now."
    )


class PromoRequest(BaseModel):
    code: str = Field(..., max_length=40)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class RateRequest(BaseModel):
    stars: int
    review: Optional[str] = Field(None, max_length=1000)
    ride_id: Optional[str] = None


class FareEstimateRequest(BaseModel):
    vehicle_type: VehicleType = VehicleType.MOTORCYCLE
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)


class RideStatusUpdate(BaseModel):
    status: RideStatus
    driver_id: Optional[str] = Field(
        None, description="Required when a driver accepts an unassigned ride."
    )


class DriverLocationUpdate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


# ── Responses ─────────────────────────────────────────────────────────


class FareResponse(BaseModel):
    base: float
    distance: float
    time: float
    surge: Optional[float] = None
    discount: Optional[float] = None
    subtotal: float
    total: float

    @classmethod
    def from_fare(cls, fare: Fare) -> FareResponse:
        return cls(
            base=fare.base,
            distance=fare.distance,
            time=fare.time,
            surge=fare.surge,
            discount=fare.discount,
            subtotal=fare.subtotal,
            total=fare.total,
        )


class FareEstimateResponse(BaseModel):
    vehicle_type: VehicleType
    distance_m: float
    duration_s: float
    surge_multiplier: float
    fare: FareResponse


class VehicleClassResponse(BaseModel):
    type: VehicleType
    name: str
    description: str
    base_fare: float
    per_km: float
    per_minute: float
    min_fare: float
    capacity: int
    estimated_arrival: str

    model_config = {"from_attributes": True}


class SessionResponse(BaseModel):
    pickup: Optional[dict[str, Any]] = None
    dropoff: Optional[dict[str, Any]] = None
    vehicle_type: VehicleType
    route: Optional[dict[str, Any]] = None
    fare: Optional[dict[str, Any]] = None
    payment_method: PaymentMethod
    scheduled_at: Optional[datetime] = None
    promo_code: Optional[str] = None
    surge_multiplier: float
    active_ride_id: Optional[str] = None
    status: Optional[RideStatus] = None
    driver: Optional[dict[str, Any]] = None
    driver_location: Optional[dict[str, float]] = None
    is_booking: bool
    is_finding_driver: bool
    last_error: Optional[str] = None


class PromoResponse(BaseModel):
    code: str
    kind: str
    value: float
    max_discount: Optional[float] = None
    fare: Optional[FareResponse] = None


class BookingResponse(BaseModel):
    ride_id: str
    status: RideStatus


class RideResponse(BaseModel):
    id: str
    passenger_id: str
    driver_id: Optional[str] = None
    vehicle_type: str
    status: str
    total: Optional[float] = None
    payment_method: Optional[str] = None
    rating: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> RideResponse:
        return cls(
            id=doc["id"],
            passenger_id=doc.get("passengerId", ""),
            driver_id=doc.get("driverId"),
            vehicle_type=doc.get("vehicleType", ""),
            status=doc.get("status", ""),
            total=(doc.get("fare") or {}).get("total"),
            payment_method=doc.get("paymentMethod"),
            rating=doc.get("rating"),
            created_at=parse_timestamp(doc.get("createdAt")),
        )


class SessionsResponse(BaseModel):
    open_sessions: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    kind: str
