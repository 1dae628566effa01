"""
Shared test fixtures.

Session tests run against ``InMemoryDocumentStore`` so pushes fan out
synchronously after each write.  The SQL store tests use an in-memory
SQLite database (via aiosqlite) instead of PostgreSQL, and no Redis: the
change feed falls back to in-process dispatch.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Iterator, Optional
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from ridesync.domain.entities import Location, Route
from ridesync.infrastructure.database import Base, build_session_factory
from ridesync.infrastructure.identity import StaticIdentityProvider
from ridesync.infrastructure.rate_limit import AttemptLimiter
from ridesync.infrastructure.routing import RoutingProvider
from ridesync.infrastructure.sql_store import SqlDocumentStore
from ridesync.infrastructure.store import InMemoryDocumentStore
from ridesync.session.synchronizer import RideSynchronizer

MANILA = ZoneInfo("Asia/Manila")

# Wednesday, noon: no peak window, no weekend
OFF_PEAK = datetime(2026, 3, 4, 12, 0, tzinfo=MANILA)

PASSENGER = "passenger-1"

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class TickingClock:
    """Each reading is one second after the previous one."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class StubRouting(RoutingProvider):
    """Fixed route; optionally holds every lookup until ``release``."""

    def __init__(self, distance_m: float = 5000, duration_s: float = 900, hold: bool = False):
        self.route = Route(distance_m, duration_s, "encoded")
        self.calls: list[tuple[Location, Location]] = []
        self._gate: Optional[asyncio.Event] = asyncio.Event() if hold else None

    def release(self) -> None:
        assert self._gate is not None
        self._gate.set()

    async def directions(self, origin: Location, destination: Location) -> Route:
        self.calls.append((origin, destination))
        if self._gate is not None:
            await self._gate.wait()
        return self.route


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def store() -> InMemoryDocumentStore:
    start = datetime(2026, 3, 4, 4, 0, tzinfo=timezone.utc)
    return InMemoryDocumentStore(clock=TickingClock(start))


@pytest.fixture
def identity() -> StaticIdentityProvider:
    return StaticIdentityProvider(PASSENGER)


@pytest.fixture
def routing() -> StubRouting:
    return StubRouting()


@pytest.fixture
def limiter() -> AttemptLimiter:
    return AttemptLimiter(limit=5, window_seconds=60)


@pytest.fixture
def sync(store, identity, routing, limiter) -> Iterator[RideSynchronizer]:
    synchronizer = RideSynchronizer(
        store,
        identity,
        routing,
        limiter=limiter,
        clock=lambda: OFF_PEAK,
        reset_delay=0.01,
        session_key=PASSENGER,
    )
    yield synchronizer
    synchronizer.close()


@pytest.fixture
def place_booking(sync):
    """Fill in a valid Makati -> BGC booking and price it."""

    async def _place(dropoff: tuple[float, float] = (14.5509, 121.0503)) -> None:
        sync.set_pickup("Ayala Ave, Makati", 14.5547, 121.0244)
        sync.set_dropoff("BGC High Street", *dropoff)
        await sync.calculate_fare()

    return _place


@pytest_asyncio.fixture
async def sql_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create tables, yield the engine, then drop everything."""
    engine = create_async_engine(TEST_DB_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def sql_store(sql_engine) -> AsyncGenerator[SqlDocumentStore, None]:
    store = SqlDocumentStore(build_session_factory(sql_engine))
    yield store
    await store.close()
