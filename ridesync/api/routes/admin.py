"""
Admin / observability endpoints
===============================

GET /api/v1/admin/sessions -- number of open passenger sessions
GET /api/v1/admin/health   -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from ridesync.api.dependencies import get_registry
from ridesync.api.middleware import limiter
from ridesync.api.schemas import HealthResponse, SessionsResponse
from ridesync.session.registry import SessionRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/sessions",
    response_model=SessionsResponse,
    summary="Count open passenger sessions",
)
@limiter.limit("100/minute")
async def get_sessions(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
):
    return SessionsResponse(open_sessions=len(registry))


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
