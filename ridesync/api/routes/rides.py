"""
Ride endpoints
==============

GET   /api/v1/rides/history          -- caller's past rides, newest first
GET   /api/v1/rides/{ride_id}        -- one ride record
PATCH /api/v1/rides/{ride_id}/status -- dispatch / driver progression

Status changes go straight to the store; every passenger session tracking
the ride picks them up through its subscription.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from ridesync.api.dependencies import get_session, get_store
from ridesync.api.middleware import limiter
from ridesync.api.schemas import RideResponse, RideStatusUpdate
from ridesync.domain.entities import Ride
from ridesync.domain.enums import UNASSIGNED_STATUSES, RideStatus
from ridesync.domain.errors import InvalidInput, RideNotFound
from ridesync.infrastructure.repositories import RideRepository
from ridesync.infrastructure.store import SERVER_TIMESTAMP, DocumentStore
from ridesync.session.synchronizer import RideSynchronizer

router = APIRouter(prefix="/rides", tags=["rides"])

STATUS_TIMESTAMPS: dict[RideStatus, str] = {
    RideStatus.ACCEPTED: "acceptedAt",
    RideStatus.ARRIVED: "arrivedAt",
    RideStatus.IN_PROGRESS: "startedAt",
    RideStatus.COMPLETED: "completedAt",
    RideStatus.CANCELLED: "cancelledAt",
}


@router.get(
    "/history",
    response_model=list[RideResponse],
    summary="Caller's ride history",
)
@limiter.limit("100/minute")
async def ride_history(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    sync: RideSynchronizer = Depends(get_session),
):
    docs = await sync.ride_history(limit)
    return [RideResponse.from_document(doc) for doc in docs]


@router.get("/{ride_id}", response_model=RideResponse, summary="Get one ride")
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: str,
    store: DocumentStore = Depends(get_store),
):
    doc = await RideRepository(store).get(ride_id)
    if doc is None:
        raise RideNotFound("Ride not found")
    return RideResponse.from_document(doc)


@router.patch(
    "/{ride_id}/status",
    response_model=RideResponse,
    summary="Advance a ride's status",
    description=(
        "Applies one step of the ride lifecycle. Accepting an unassigned "
        "ride requires ``driver_id``."
    ),
)
@limiter.limit("100/minute")
async def update_status(
    request: Request,
    ride_id: str,
    body: RideStatusUpdate,
    store: DocumentStore = Depends(get_store),
):
    repo = RideRepository(store)
    doc = await repo.get(ride_id)
    if doc is None:
        raise RideNotFound("Ride not found")

    ride = Ride.from_document(doc)
    previous = ride.status
    ride.transition_to(body.status)

    fields: dict[str, Any] = {"status": ride.status.value, "updatedAt": SERVER_TIMESTAMP}
    if body.status == RideStatus.ACCEPTED and previous in UNASSIGNED_STATUSES:
        if not body.driver_id:
            raise InvalidInput("driver_id is required to accept a ride")
        fields["driverId"] = body.driver_id
    elif body.driver_id:
        fields["driverId"] = body.driver_id
    stamp = STATUS_TIMESTAMPS.get(body.status)
    if stamp:
        fields[stamp] = SERVER_TIMESTAMP
    if body.status == RideStatus.CANCELLED:
        fields["cancelledBy"] = "driver"

    await repo.update(ride_id, fields)
    return RideResponse.from_document(await repo.get(ride_id))
