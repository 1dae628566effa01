"""
Passenger session endpoints
===========================

Every route acts on the caller's ``RideSynchronizer`` (keyed by the
``X-User-Id`` header) and, except for booking and promo replies, returns
the refreshed session view.

GET    /api/v1/session           -- current session view
PUT    /api/v1/session/pickup    -- set pickup place
PUT    /api/v1/session/dropoff   -- set dropoff place
PUT    /api/v1/session/vehicle   -- select vehicle class (re-prices)
PUT    /api/v1/session/payment   -- select payment method
PUT    /api/v1/session/schedule  -- book for later (null = now)
POST   /api/v1/session/fare      -- route and price the trip
POST   /api/v1/session/promo     -- apply a promo code
DELETE /api/v1/session/promo     -- remove the promo code
POST   /api/v1/session/book      -- write the ride record (201)
POST   /api/v1/session/resume    -- re-attach to the latest active ride
POST   /api/v1/session/cancel    -- cancel the active ride
POST   /api/v1/session/rate      -- rate a finished ride
POST   /api/v1/session/reset     -- drop booking and ride state
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request

from ridesync.api.dependencies import get_session
from ridesync.api.middleware import limiter
from ridesync.api.schemas import (
    BookingResponse,
    CancelRequest,
    FareResponse,
    PaymentRequest,
    PlaceRequest,
    PromoRequest,
    PromoResponse,
    RateRequest,
    ScheduleRequest,
    SessionResponse,
    VehicleRequest,
)
from ridesync.session.synchronizer import RideSynchronizer

router = APIRouter(prefix="/session", tags=["session"])


def _view(sync: RideSynchronizer) -> SessionResponse:
    return SessionResponse(**sync.session.to_view())


@router.get("", response_model=SessionResponse, summary="Current session view")
async def get_session_view(sync: RideSynchronizer = Depends(get_session)):
    return _view(sync)


@router.put("/pickup", response_model=SessionResponse, summary="Set pickup place")
async def set_pickup(body: PlaceRequest, sync: RideSynchronizer = Depends(get_session)):
    sync.set_pickup(body.address, body.lat, body.lng)
    return _view(sync)


@router.put("/dropoff", response_model=SessionResponse, summary="Set dropoff place")
async def set_dropoff(body: PlaceRequest, sync: RideSynchronizer = Depends(get_session)):
    sync.set_dropoff(body.address, body.lat, body.lng)
    return _view(sync)


@router.put(
    "/vehicle",
    response_model=SessionResponse,
    summary="Select vehicle class",
    description="Re-prices the trip when both locations are already set.",
)
async def select_vehicle(
    body: VehicleRequest, sync: RideSynchronizer = Depends(get_session)
):
    await sync.select_vehicle_class(body.vehicle_type)
    return _view(sync)


@router.put("/payment", response_model=SessionResponse, summary="Select payment method")
async def set_payment(body: PaymentRequest, sync: RideSynchronizer = Depends(get_session)):
    sync.set_payment_method(body.method)
    return _view(sync)


@router.put("/schedule", response_model=SessionResponse, summary="Schedule the ride")
async def set_schedule(
    body: ScheduleRequest, sync: RideSynchronizer = Depends(get_session)
):
    sync.set_schedule(body.scheduled_at)
    return _view(sync)


@router.post("/fare", response_model=FareResponse, summary="Route and price the trip")
async def calculate_fare(sync: RideSynchronizer = Depends(get_session)):
    return FareResponse.from_fare(await sync.calculate_fare())


@router.post(
    "/promo",
    response_model=PromoResponse,
    summary="Apply a promo code",
    responses={429: {"description": "Too many attempts; see Retry-After."}},
)
@limiter.limit("30/minute")
async def apply_promo(
    request: Request,
    body: PromoRequest,
    sync: RideSynchronizer = Depends(get_session),
):
    promo = await sync.apply_promo_code(body.code)
    fare = sync.session.fare
    return PromoResponse(
        code=promo.code,
        kind=getattr(promo.kind, "value", promo.kind),
        value=promo.value,
        max_discount=promo.max_discount,
        fare=FareResponse.from_fare(fare) if fare else None,
    )


@router.delete("/promo", response_model=SessionResponse, summary="Remove the promo code")
async def remove_promo(sync: RideSynchronizer = Depends(get_session)):
    sync.remove_promo_code()
    return _view(sync)


@router.post(
    "/book",
    status_code=201,
    response_model=BookingResponse,
    summary="Book the ride",
)
@limiter.limit("20/minute")
async def book_ride(request: Request, sync: RideSynchronizer = Depends(get_session)):
    ride_id = await sync.book_ride()
    return BookingResponse(ride_id=ride_id, status=sync.session.status)


@router.post(
    "/resume",
    response_model=SessionResponse,
    summary="Re-attach to the latest active ride",
)
async def resume_ride(sync: RideSynchronizer = Depends(get_session)):
    await sync.resume_active_ride()
    return _view(sync)


@router.post("/cancel", response_model=SessionResponse, summary="Cancel the active ride")
async def cancel_ride(
    body: Optional[CancelRequest] = None, sync: RideSynchronizer = Depends(get_session)
):
    await sync.cancel_ride(body.reason if body else None)
    return _view(sync)


@router.post("/rate", status_code=204, summary="Rate a ride")
async def rate_ride(body: RateRequest, sync: RideSynchronizer = Depends(get_session)):
    await sync.rate_ride(body.stars, body.review, body.ride_id)


@router.post("/reset", response_model=SessionResponse, summary="Clear the session")
async def reset_session(sync: RideSynchronizer = Depends(get_session)):
    sync.reset_ride()
    return _view(sync)
