"""One ``RideSynchronizer`` per signed-in passenger for the HTTP layer."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, Optional

from ridesync.config import settings
from ridesync.infrastructure.identity import StaticIdentityProvider
from ridesync.infrastructure.rate_limit import AttemptLimiter
from ridesync.infrastructure.routing import RoutingProvider
from ridesync.infrastructure.store import DocumentStore

from .synchronizer import RideSynchronizer

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(
        self,
        store: DocumentStore,
        routing: Optional[RoutingProvider] = None,
        limiter: Optional[AttemptLimiter] = None,
        reset_delay: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.routing = routing
        self.limiter = limiter or AttemptLimiter(
            settings.promo_attempt_limit, settings.promo_attempt_window_seconds
        )
        self.reset_delay = reset_delay
        self._clock = clock
        self._sessions: dict[str, RideSynchronizer] = {}
        self._last_seen: dict[str, float] = {}

    def get(self, user_id: str) -> RideSynchronizer:
        sync = self._sessions.get(user_id)
        if sync is None:
            sync = RideSynchronizer(
                self.store,
                StaticIdentityProvider(user_id),
                self.routing,
                limiter=self.limiter,
                reset_delay=self.reset_delay,
                session_key=user_id,
            )
            self._sessions[user_id] = sync
            logger.info("Opened ride session for %s", user_id)
        self._last_seen[user_id] = self._clock()
        return sync

    def drop(self, user_id: str) -> None:
        self._last_seen.pop(user_id, None)
        sync = self._sessions.pop(user_id, None)
        if sync is not None:
            sync.close()

    def evict_idle(self, max_idle_seconds: Optional[float] = None) -> int:
        """
        Drop sessions untouched for *max_idle_seconds* that track no ride.

        Sessions with an active ride stay until the ride ends and resets.
        Returns the number of sessions dropped.
        """
        if max_idle_seconds is None:
            max_idle_seconds = settings.session_idle_seconds
        now = self._clock()
        idle = [
            user_id
            for user_id, sync in self._sessions.items()
            if sync.session.active_ride_id is None
            and now - self._last_seen.get(user_id, now) >= max_idle_seconds
        ]
        for user_id in idle:
            self.drop(user_id)
        if idle:
            logger.info("Evicted %d idle ride sessions", len(idle))
        return len(idle)

    def __iter__(self) -> Iterator[RideSynchronizer]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)

    def close(self) -> None:
        for user_id in list(self._sessions):
            self.drop(user_id)
