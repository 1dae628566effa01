"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Header

from ridesync.config import settings
from ridesync.domain.errors import Unauthenticated
from ridesync.infrastructure.database import build_engine, build_session_factory
from ridesync.infrastructure.redis_client import get_redis
from ridesync.infrastructure.routing import RoutingProvider, build_routing
from ridesync.infrastructure.sql_store import SqlDocumentStore
from ridesync.infrastructure.store import DocumentStore
from ridesync.session.registry import SessionRegistry
from ridesync.session.synchronizer import RideSynchronizer

_store: Optional[DocumentStore] = None
_registry: Optional[SessionRegistry] = None


def get_store() -> DocumentStore:
    """Process-wide document store (PostgreSQL + Redis change feed)."""
    global _store
    if _store is None:
        engine = build_engine(settings.database_url)
        _store = SqlDocumentStore(build_session_factory(engine), get_redis())
    return _store


def get_routing() -> RoutingProvider:
    return build_routing(
        settings.routing_url,
        settings.routing_timeout_seconds,
        settings.fallback_average_speed_kmh,
    )


def get_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry(get_store(), get_routing())
    return _registry


async def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Signed-in passenger id, forwarded by the auth gateway."""
    if x_user_id:
        return x_user_id
    if settings.auth_bypass:
        return settings.bypass_user_id
    raise Unauthenticated("Please login to continue")


async def get_session(
    user_id: str = Depends(get_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> RideSynchronizer:
    return registry.get(user_id)
