"""
Background Surge Refresher
==========================

Runs every ``SURGE_REFRESH_INTERVAL_SECONDS`` (default 300 s).

The surge multiplier is a pure function of the local wall clock, so the
loop only re-evaluates it and pushes the new value into every open ride
session.  Fares already quoted keep the multiplier they were priced with;
the next ``calculate_fare`` picks up the new one.

Each cycle first drops passenger sessions idle for
``SESSION_IDLE_SECONDS`` that no longer track a ride.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from ridesync.config import settings
from ridesync.session.registry import SessionRegistry
from ridesync.session.synchronizer import default_fare_engine

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_surge_loop(registry: SessionRegistry) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(registry))
    logger.info(
        "Surge refresher started (interval=%ds)",
        settings.surge_refresh_interval_seconds,
    )


async def stop_surge_loop() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = None
    _stop_event = None
    logger.info("Surge refresher stopped")


def run_surge_cycle(
    registry: SessionRegistry, now: Optional[datetime] = None
) -> float:
    """Evict idle sessions, then refresh the rest.  Returns the multiplier applied."""
    now = now or datetime.now(ZoneInfo(settings.timezone))
    registry.evict_idle()
    multiplier = default_fare_engine().compute_surge_multiplier(now)
    for sync in registry:
        sync.refresh_surge(now)
    logger.debug("Surge %.2f applied to %d sessions", multiplier, len(registry))
    return multiplier


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(registry: SessionRegistry) -> None:
    """Periodic loop: refresh then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            run_surge_cycle(registry)
        except Exception:
            logger.exception("Unhandled error in surge refresh")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.surge_refresh_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle
