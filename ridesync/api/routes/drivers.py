"""
Driver endpoints
================

PUT /api/v1/drivers/{driver_id}/location -- location feed from the driver app
"""

from fastapi import APIRouter, Depends, Request

from ridesync.api.dependencies import get_store
from ridesync.api.middleware import limiter
from ridesync.api.schemas import DriverLocationUpdate
from ridesync.infrastructure.repositories import DriverRepository
from ridesync.infrastructure.store import DocumentStore

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.put("/{driver_id}/location", status_code=204, summary="Report driver location")
@limiter.limit("600/minute")
async def update_location(
    request: Request,
    driver_id: str,
    body: DriverLocationUpdate,
    store: DocumentStore = Depends(get_store),
):
    await DriverRepository(store).update_location(driver_id, body.lat, body.lng)
