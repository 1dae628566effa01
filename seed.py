"""
Seed script -- populates the document store with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 4 promo codes (percentage, fixed, free delivery, expired)
  - 5 drivers parked around Makati / BGC
"""

import asyncio
from datetime import datetime, timedelta, timezone

from ridesync.config import settings
from ridesync.domain.enums import DiscountKind
from ridesync.domain.promos import PromoCode
from ridesync.infrastructure.database import build_engine, build_session_factory
from ridesync.infrastructure.repositories import DriverRepository, PromoRepository
from ridesync.infrastructure.sql_store import SqlDocumentStore

NOW = datetime.now(timezone.utc)

PROMOS = [
    PromoCode(
        "WELCOME20", DiscountKind.PERCENTAGE, 20, max_discount=50,
        valid_from=NOW - timedelta(days=1), valid_to=NOW + timedelta(days=90),
    ),
    PromoCode(
        "SAVE30", DiscountKind.FIXED, 30, min_order=100, usage_limit=500,
        valid_from=NOW - timedelta(days=1), valid_to=NOW + timedelta(days=30),
    ),
    PromoCode(
        "FREEDEL", DiscountKind.FREE_DELIVERY, 0,
        valid_from=NOW - timedelta(days=1), valid_to=NOW + timedelta(days=30),
        applicable_services=("delivery",),
    ),
    PromoCode(
        "SUMMER10", DiscountKind.PERCENTAGE, 10,
        valid_from=NOW - timedelta(days=120), valid_to=NOW - timedelta(days=30),
    ),
]

DRIVERS = [
    {"id": "drv_001", "firstName": "Juan", "lastName": "Dela Cruz", "rating": 4.9,
     "vehicle": {"color": "Red", "make": "Honda", "model": "Click 125", "plateNumber": "NAB 1234"},
     "currentLocation": {"lat": 14.5547, "lng": 121.0244}},
    {"id": "drv_002", "firstName": "Maria", "lastName": "Santos", "rating": 4.8,
     "vehicle": {"color": "White", "make": "Toyota", "model": "Vios", "plateNumber": "ABC 5678"},
     "currentLocation": {"lat": 14.5509, "lng": 121.0503}},
    {"id": "drv_003", "firstName": "Jose", "lastName": "Reyes", "rating": 4.7,
     "vehicle": {"color": "Silver", "make": "Toyota", "model": "HiAce", "plateNumber": "VAN 9012"},
     "currentLocation": {"lat": 14.5580, "lng": 121.0270}},
    {"id": "drv_004", "firstName": "Ana", "lastName": "Garcia", "rating": 4.6,
     "vehicle": {"color": "Black", "make": "Yamaha", "model": "NMAX", "plateNumber": "MC 3456"},
     "currentLocation": {"lat": 14.5495, "lng": 121.0460}},
    {"id": "drv_005", "firstName": "Pedro", "lastName": "Bautista", "rating": 4.9,
     "vehicle": {"color": "Gray", "make": "Mitsubishi", "model": "Xpander", "plateNumber": "NCR 7890"},
     "currentLocation": {"lat": 14.5610, "lng": 121.0330}},
]


async def seed(store: SqlDocumentStore):
    promos = PromoRepository(store)
    if await promos.find_by_code(PROMOS[0].code) is not None:
        print("Store already seeded. Skipping.")
        return

    # ── Promo codes ───────────────────────────────────────────────────
    for promo in PROMOS:
        await promos.save(promo)
    print(f"  Created {len(PROMOS)} promo codes")

    # ── Drivers ───────────────────────────────────────────────────────
    drivers = DriverRepository(store)
    for d in DRIVERS:
        await drivers.save(d["id"], {k: v for k, v in d.items() if k != "id"})
    print(f"  Created {len(DRIVERS)} drivers")

    print("\nSeed complete!")


async def main():
    print("Seeding document store...")
    engine = build_engine(settings.database_url)
    store = SqlDocumentStore(build_session_factory(engine))
    try:
        await seed(store)
    finally:
        await store.close()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
