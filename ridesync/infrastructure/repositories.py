"""
Repository Pattern -- keeps collection names, field names and store error
handling out of the ride session.

Each repository receives a ``DocumentStore``.  Any failure of the store
itself (network, driver, timeout) surfaces as ``StoreUnavailable``; domain
errors such as ``NotFound`` pass through unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ridesync.domain.enums import RideStatus
from ridesync.domain.errors import RideSyncError, StoreUnavailable
from ridesync.domain.promos import PromoCode, normalize_code

from .store import SERVER_TIMESTAMP, Document, DocumentStore, OnChange, Unsubscribe

logger = logging.getLogger(__name__)

T = TypeVar("T")

RIDES = "rides"
DRIVERS = "drivers"
PROMOS = "promos"

ACTIVE_STATUSES = [
    RideStatus.PENDING.value,
    RideStatus.SCHEDULED.value,
    RideStatus.ACCEPTED.value,
    RideStatus.ARRIVING.value,
    RideStatus.ARRIVED.value,
    RideStatus.IN_PROGRESS.value,
]


class _Repository:
    def __init__(self, store: DocumentStore, timeout: Optional[float] = None):
        self.store = store
        self.timeout = timeout

    async def _call(self, action: str, call: Awaitable[T]) -> T:
        try:
            if self.timeout:
                return await asyncio.wait_for(call, self.timeout)
            return await call
        except RideSyncError:
            raise
        except Exception as e:
            logger.exception("Store call failed: %s", action)
            raise StoreUnavailable(f"Could not {action}. Please try again.") from e

    def _subscribe(self, action: str, opener: Callable[[], Unsubscribe]) -> Unsubscribe:
        try:
            return opener()
        except Exception as e:
            logger.exception("Store subscription failed: %s", action)
            raise StoreUnavailable(f"Could not {action}. Please try again.") from e


class RideRepository(_Repository):
    async def create(self, ride_id: str, record: Document) -> None:
        await self._call("book the ride", self.store.create(RIDES, ride_id, record))

    async def get(self, ride_id: str) -> Optional[Document]:
        return await self._call("load the ride", self.store.get(RIDES, ride_id))

    async def update(self, ride_id: str, fields: Document) -> None:
        await self._call("update the ride", self.store.update(RIDES, ride_id, fields))

    async def history(self, passenger_id: str, limit: int = 20) -> list[Document]:
        return await self._call(
            "load ride history",
            self.store.query(
                RIDES,
                [("passengerId", "==", passenger_id)],
                order_by=("createdAt", "desc"),
                limit=limit,
            ),
        )

    def subscribe(self, ride_id: str, on_change: OnChange) -> Unsubscribe:
        return self._subscribe(
            "track the ride", lambda: self.store.subscribe(RIDES, ride_id, on_change)
        )

    async def latest_active(self, passenger_id: str) -> Optional[Document]:
        """The passenger's most recent non-terminal ride."""
        docs = await self._call(
            "look up the active ride",
            self.store.query(
                RIDES,
                [
                    ("passengerId", "==", passenger_id),
                    ("status", "in", ACTIVE_STATUSES),
                ],
                order_by=("createdAt", "desc"),
                limit=1,
            ),
        )
        return docs[0] if docs else None


class DriverRepository(_Repository):
    async def get(self, driver_id: str) -> Optional[Document]:
        return await self._call("load the driver", self.store.get(DRIVERS, driver_id))

    async def save(self, driver_id: str, fields: Document) -> None:
        await self._call("save the driver", self.store.create(DRIVERS, driver_id, fields))

    async def update_location(self, driver_id: str, lat: float, lng: float) -> None:
        await self._call(
            "update the driver location",
            self.store.update(
                DRIVERS,
                driver_id,
                {
                    "currentLocation": {"lat": lat, "lng": lng},
                    "locationUpdatedAt": SERVER_TIMESTAMP,
                },
            ),
        )

    def subscribe(self, driver_id: str, on_change: OnChange) -> Unsubscribe:
        return self._subscribe(
            "track the driver",
            lambda: self.store.subscribe(DRIVERS, driver_id, on_change),
        )


class PromoRepository(_Repository):
    async def find_by_code(self, code: str) -> Optional[PromoCode]:
        docs = await self._call(
            "look up the promo code",
            self.store.query(PROMOS, [("code", "==", normalize_code(code))], limit=1),
        )
        for doc in docs:
            try:
                return PromoCode.from_document(doc)
            except (KeyError, TypeError, ValueError):
                logger.warning("Malformed promo document %r", doc.get("id"))
        return None

    async def save(self, promo: PromoCode, doc_id: Optional[str] = None) -> None:
        fields: dict[str, Any] = promo.to_document()
        await self._call(
            "save the promo code",
            self.store.create(PROMOS, doc_id or promo.code, fields),
        )
