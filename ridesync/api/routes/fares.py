"""
Fare endpoints
==============

POST /api/v1/fares/estimate -- stateless quote for a pickup / dropoff pair
GET  /api/v1/fares/vehicles -- vehicle catalogue with its rate table
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Request

from ridesync.api.dependencies import get_routing
from ridesync.api.middleware import limiter
from ridesync.api.schemas import (
    FareEstimateRequest,
    FareEstimateResponse,
    FareResponse,
    VehicleClassResponse,
)
from ridesync.config import settings
from ridesync.domain.entities import Location
from ridesync.domain.vehicles import VEHICLE_CLASSES, get_vehicle_class
from ridesync.infrastructure.routing import RoutingProvider
from ridesync.session.synchronizer import default_fare_engine

router = APIRouter(prefix="/fares", tags=["fares"])


@router.post(
    "/estimate",
    response_model=FareEstimateResponse,
    summary="Quote a fare without opening a session",
)
@limiter.limit("100/minute")
async def estimate_fare(
    request: Request,
    body: FareEstimateRequest,
    routing: RoutingProvider = Depends(get_routing),
):
    vehicle_class = get_vehicle_class(body.vehicle_type)
    route = await routing.directions(
        Location(body.pickup_lat, body.pickup_lng),
        Location(body.dropoff_lat, body.dropoff_lng),
    )
    engine = default_fare_engine()
    surge = engine.compute_surge_multiplier(datetime.now(ZoneInfo(settings.timezone)))
    quote = engine.quote(vehicle_class, route.distance_m, route.duration_s, surge)
    return FareEstimateResponse(
        vehicle_type=vehicle_class.type,
        distance_m=quote.distance_m,
        duration_s=quote.duration_s,
        surge_multiplier=quote.surge_multiplier,
        fare=FareResponse.from_fare(quote.fare),
    )


@router.get(
    "/vehicles",
    response_model=list[VehicleClassResponse],
    summary="List vehicle classes and their rates",
)
async def list_vehicle_classes():
    return [VehicleClassResponse.model_validate(vc) for vc in VEHICLE_CLASSES.values()]
