"""Static vehicle-class rate table (currency: PHP, whole pesos)."""

from __future__ import annotations

from dataclasses import dataclass

from .enums import VehicleType
from .errors import InvalidInput


@dataclass(frozen=True)
class VehicleClass:
    type: VehicleType
    name: str
    description: str
    base_fare: float
    per_km: float
    per_minute: float
    min_fare: float
    capacity: int
    estimated_arrival: str


VEHICLE_CLASSES: dict[VehicleType, VehicleClass] = {
    VehicleType.MOTORCYCLE: VehicleClass(
        VehicleType.MOTORCYCLE, "MC Taxi", "Motorcycle taxi to beat traffic",
        base_fare=30, per_km=7, per_minute=1, min_fare=35,
        capacity=1, estimated_arrival="3-5 min",
    ),
    VehicleType.CAR: VehicleClass(
        VehicleType.CAR, "Car", "Standard 4-seater vehicle",
        base_fare=45, per_km=10, per_minute=1.5, min_fare=55,
        capacity=4, estimated_arrival="5-8 min",
    ),
    VehicleType.VAN: VehicleClass(
        VehicleType.VAN, "Van", "6-seater for groups/families",
        base_fare=60, per_km=13, per_minute=2, min_fare=70,
        capacity=6, estimated_arrival="8-12 min",
    ),
    VehicleType.DELIVERY: VehicleClass(
        VehicleType.DELIVERY, "Delivery", "Parcel/package courier",
        base_fare=35, per_km=8, per_minute=1, min_fare=40,
        capacity=0, estimated_arrival="5-10 min",
    ),
    VehicleType.HAPPY_MOVE: VehicleClass(
        VehicleType.HAPPY_MOVE, "Happy Move", "Moving & hauling",
        base_fare=200, per_km=18, per_minute=3, min_fare=350,
        capacity=0, estimated_arrival="15-25 min",
    ),
    # Flat fare: zero distance/time rates
    VehicleType.AIRPORT: VehicleClass(
        VehicleType.AIRPORT, "Airport", "Airport transfer",
        base_fare=500, per_km=0, per_minute=0, min_fare=500,
        capacity=4, estimated_arrival="10-15 min",
    ),
}


def get_vehicle_class(vehicle_type: VehicleType | str) -> VehicleClass:
    try:
        return VEHICLE_CLASSES[VehicleType(vehicle_type)]
    except ValueError:
        raise InvalidInput(f"Unknown vehicle type: {vehicle_type}") from None
