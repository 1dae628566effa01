"""
Ride Session Synchronizer
=========================

Owns one ``RideSession`` and keeps it in step with the authoritative ride
record once a ride is booked.

Lifecycle
---------
1. Booking inputs (pickup, dropoff, vehicle class, promo) are mutated
   locally; ``calculate_fare`` prices them.
2. ``book_ride`` writes the ride record.  This is the only status change
   that originates here (``pending`` or ``scheduled``).
3. From then on ``status`` and the driver fields are *derived*: a
   subscription on the ride record overwrites them on every push, and a
   second subscription on the assigned driver tracks their profile and
   location.
4. A terminal status schedules ``reset_ride`` after a short delay.

Concurrency
-----------
Everything runs on one event loop.  Pushes and user actions interleave at
``await`` points, so every continuation re-reads ``self.session`` instead
of trusting state captured before the await.  Each subscription callback
carries a liveness token; once its handle is closed the callback is a
no-op.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, NoReturn, Optional
from zoneinfo import ZoneInfo

from ridesync.config import settings
from ridesync.domain.entities import DriverProfile, Location, Place, Ride
from ridesync.domain.enums import (
    RIDE_TRANSITIONS,
    TERMINAL_STATUSES,
    PaymentMethod,
    RideStatus,
    VehicleType,
)
from ridesync.domain.errors import (
    IncompleteBooking,
    InvalidCoordinates,
    InvalidInput,
    InvalidRating,
    InvalidStateTransition,
    NoActiveRide,
    NotFound,
    PromoRejected,
    RateLimited,
    RideNotFound,
    RideSyncError,
    StoreUnavailable,
    Unauthenticated,
)
from ridesync.domain.pricing import Fare, FareEngine
from ridesync.domain.promos import RIDES_SERVICE, PromoCode, validate_promo
from ridesync.domain.vehicles import get_vehicle_class
from ridesync.infrastructure.identity import IdentityProvider
from ridesync.infrastructure.rate_limit import AttemptLimiter
from ridesync.infrastructure.repositories import (
    DriverRepository,
    PromoRepository,
    RideRepository,
)
from ridesync.infrastructure.routing import RoutingProvider, build_routing
from ridesync.infrastructure.store import SERVER_TIMESTAMP, Document, DocumentStore

from .state import RideSession

logger = logging.getLogger(__name__)

SessionListener = Callable[[RideSession], None]

RIDE = "ride"
DRIVER = "driver"


class _Liveness:
    __slots__ = ("alive",)

    def __init__(self) -> None:
        self.alive = True


@dataclass
class _Subscription:
    target: str
    token: _Liveness
    unsubscribe: Callable[[], None]

    def close(self) -> None:
        self.token.alive = False
        self.unsubscribe()


def default_fare_engine() -> FareEngine:
    return FareEngine(
        peak_windows=settings.peak_windows,
        peak_multiplier=settings.peak_multiplier,
        weekend_multiplier=settings.weekend_multiplier,
    )


class RideSynchronizer:
    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityProvider,
        routing: Optional[RoutingProvider] = None,
        *,
        engine: Optional[FareEngine] = None,
        limiter: Optional[AttemptLimiter] = None,
        clock: Optional[Callable[[], datetime]] = None,
        reset_delay: Optional[float] = None,
        session_key: Optional[str] = None,
    ):
        timeout = settings.store_timeout_seconds
        self.rides = RideRepository(store, timeout)
        self.drivers = DriverRepository(store, timeout)
        self.promos = PromoRepository(store, timeout)
        self.identity = identity
        self.routing = routing or build_routing(
            settings.routing_url,
            settings.routing_timeout_seconds,
            settings.fallback_average_speed_kmh,
        )
        self.engine = engine or default_fare_engine()
        self.limiter = limiter or AttemptLimiter(
            settings.promo_attempt_limit, settings.promo_attempt_window_seconds
        )
        self._clock = clock or (lambda: datetime.now(ZoneInfo(settings.timezone)))
        self.reset_delay = (
            settings.ride_reset_delay_seconds if reset_delay is None else reset_delay
        )
        self.session_key = session_key or uuid.uuid4().hex

        self.session = RideSession()
        self._subscriptions: dict[str, _Subscription] = {}
        self._listeners: list[SessionListener] = []
        self._reset_handle: Optional[asyncio.TimerHandle] = None
        self._cancel_requested: Optional[str] = None
        self._user_id = identity.current_user_id()
        self._auth_unsubscribe = identity.on_auth_changed(self._on_auth_changed)

    # ── Observers ─────────────────────────────────────────────────

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.session)
            except Exception:
                logger.exception("Session listener raised")

    def _fail(self, error: RideSyncError) -> NoReturn:
        self.session.last_error = error.message
        self._notify()
        raise error

    # ── Booking inputs ────────────────────────────────────────────

    def set_pickup(self, address: str, lat: float, lng: float) -> Place:
        self.session.pickup = Place(address, Location(lat, lng))
        self._notify()
        return self.session.pickup

    def set_dropoff(self, address: str, lat: float, lng: float) -> Place:
        self.session.dropoff = Place(address, Location(lat, lng))
        self._notify()
        return self.session.dropoff

    async def select_vehicle_class(self, vehicle_type: VehicleType | str) -> Optional[Fare]:
        try:
            self.session.vehicle_class = get_vehicle_class(vehicle_type)
        except InvalidInput as e:
            self._fail(e)
        if self.session.pickup and self.session.dropoff:
            return await self.calculate_fare()
        self._notify()
        return None

    def set_payment_method(self, method: PaymentMethod | str) -> None:
        try:
            self.session.payment_method = PaymentMethod(method)
        except ValueError:
            self._fail(InvalidInput(f"Unsupported payment method: {method}"))
        self._notify()

    def set_schedule(self, scheduled_at: Optional[datetime]) -> None:
        if scheduled_at is not None:
            if scheduled_at.tzinfo is None:
                scheduled_at = scheduled_at.replace(tzinfo=self._clock().tzinfo)
            if scheduled_at <= self._clock():
                self._fail(InvalidInput("Scheduled time must be in the future"))
        self.session.scheduled_at = scheduled_at
        self._notify()

    def refresh_surge(self, now: Optional[datetime] = None) -> float:
        multiplier = self.engine.compute_surge_multiplier(now or self._clock())
        self.session.surge_multiplier = multiplier
        return multiplier

    # ── Fare & promo ──────────────────────────────────────────────

    async def calculate_fare(self) -> Fare:
        session = self.session
        if not session.pickup or not session.dropoff:
            self._fail(IncompleteBooking("Please set pickup and dropoff locations"))
        pickup, dropoff = session.pickup, session.dropoff

        route = await self.routing.directions(pickup.location, dropoff.location)

        session = self.session
        surge = self.refresh_surge()
        quote = self.engine.quote(
            session.vehicle_class,
            route.distance_m,
            route.duration_s,
            surge,
            session.promo,
        )
        if session.pickup != pickup or session.dropoff != dropoff:
            logger.debug("Locations changed while routing; discarding fare")
            return quote.fare

        session.route = route
        session.quote = quote
        session.last_error = None
        self._notify()
        return quote.fare

    async def apply_promo_code(self, code: str) -> PromoCode:
        if not code or not code.strip():
            self._fail(InvalidInput("Please enter a promo code"))

        allowed, retry_after = self.limiter.try_acquire(self.session_key)
        if not allowed:
            self._fail(
                RateLimited(
                    f"Too many attempts. Try again in {retry_after} seconds",
                    retry_after,
                )
            )

        try:
            promo = await self.promos.find_by_code(code)
        except StoreUnavailable as e:
            self._fail(e)
        if promo is None:
            self._fail(NotFound("Invalid promo code"))

        session = self.session
        fare = session.fare
        try:
            validate_promo(
                promo,
                datetime.now(timezone.utc),
                RIDES_SERVICE,
                fare.subtotal if fare else None,
            )
        except PromoRejected as e:
            self._fail(e)

        session.promo = promo
        if session.quote is not None:
            session.quote = self.engine.with_promo(session.quote, promo)
        session.last_error = None
        self._notify()
        return promo

    def remove_promo_code(self) -> Optional[Fare]:
        session = self.session
        session.promo = None
        if session.quote is not None:
            session.quote = self.engine.with_promo(session.quote, None)
        self._notify()
        return session.fare

    # ── Booking ───────────────────────────────────────────────────

    def _current_user(self) -> Optional[str]:
        user_id = self.identity.current_user_id()
        if user_id is None and settings.auth_bypass:
            return settings.bypass_user_id
        return user_id

    async def book_ride(self) -> str:
        session = self.session
        user_id = self._current_user()
        if not user_id:
            self._fail(Unauthenticated("Please login to book a ride"))
        if not session.pickup or not session.dropoff or session.quote is None:
            self._fail(IncompleteBooking("Please complete all booking details"))
        for label, place in (("pickup", session.pickup), ("dropoff", session.dropoff)):
            if not place.location.is_plausible():
                self._fail(
                    InvalidCoordinates(f"Invalid {label} location", {"field": label})
                )
        if session.active_ride_id:
            self._fail(InvalidInput("You already have an active ride"))

        ride_id = f"ride_{uuid.uuid4().hex}"
        scheduled = session.is_scheduled
        record = self._ride_record(ride_id, user_id, session)

        session.is_booking = True
        session.last_error = None
        self._notify()
        try:
            await self.rides.create(ride_id, record)
        except StoreUnavailable as e:
            session.is_booking = False
            self._fail(e)

        session.is_booking = False
        if self.session is not session:
            # Reset or signed out mid-write; resume_active_ride re-attaches
            logger.info("Session reset while booking %s; not attaching", ride_id)
            return ride_id
        session.active_ride_id = ride_id
        session.status = RideStatus.SCHEDULED if scheduled else RideStatus.PENDING
        session.is_finding_driver = not scheduled
        self._cancel_requested = None
        logger.info("Booked %s for %s (%s)", ride_id, user_id, session.status.value)

        try:
            self._open_ride_subscription(ride_id)
        except StoreUnavailable as e:
            session.last_error = e.message
        self._notify()
        return ride_id

    def _ride_record(self, ride_id: str, user_id: str, session: RideSession) -> Document:
        assert session.pickup and session.dropoff and session.quote
        record: dict[str, Any] = {
            "id": ride_id,
            "passengerId": user_id,
            "vehicleType": session.vehicle_class.type.value,
            "pickup": session.pickup.to_document(),
            "dropoff": session.dropoff.to_document(),
            "route": session.route.to_document() if session.route else None,
            "fare": session.quote.fare.to_document(),
            "paymentMethod": session.payment_method.value,
            "paymentStatus": "pending",
            "status": (
                RideStatus.SCHEDULED if session.is_scheduled else RideStatus.PENDING
            ).value,
            "promoCode": session.promo.code if session.promo else None,
            "surgeMultiplier": session.quote.surge_multiplier,
            "isScheduled": session.is_scheduled or None,
            "scheduledAt": session.scheduled_at,
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        return {k: v for k, v in record.items() if v is not None}

    async def resume_active_ride(self) -> Optional[str]:
        """Re-attach to the passenger's latest non-terminal ride, if any."""
        user_id = self._current_user()
        if not user_id or self.session.active_ride_id:
            return self.session.active_ride_id
        try:
            doc = await self.rides.latest_active(user_id)
        except StoreUnavailable as e:
            self._fail(e)
        if doc is None:
            return None
        try:
            ride = Ride.from_document(doc)
        except (KeyError, TypeError, ValueError):
            logger.warning("Malformed ride document %r", doc.get("id"))
            return None

        session = self.session
        if session.active_ride_id:
            return session.active_ride_id
        session.active_ride_id = ride.id
        session.status = ride.status
        session.is_finding_driver = ride.status == RideStatus.PENDING
        self._open_ride_subscription(ride.id)
        self._notify()
        return ride.id

    # ── Subscription merge ────────────────────────────────────────

    def _open_ride_subscription(self, ride_id: str) -> None:
        self._close(RIDE)
        token = _Liveness()

        def on_push(doc: Optional[Document]) -> None:
            if token.alive:
                self._merge_ride(ride_id, doc)

        unsubscribe = self.rides.subscribe(ride_id, on_push)
        self._subscriptions[RIDE] = _Subscription(ride_id, token, unsubscribe)

    def _open_driver_subscription(self, driver_id: str) -> None:
        self._close(DRIVER)
        token = _Liveness()

        def on_push(doc: Optional[Document]) -> None:
            if token.alive:
                self._merge_driver(driver_id, doc)

        unsubscribe = self.drivers.subscribe(driver_id, on_push)
        self._subscriptions[DRIVER] = _Subscription(driver_id, token, unsubscribe)

    def _close(self, kind: str) -> None:
        subscription = self._subscriptions.pop(kind, None)
        if subscription is not None:
            subscription.close()

    def subscription_target(self, kind: str) -> Optional[str]:
        subscription = self._subscriptions.get(kind)
        return subscription.target if subscription else None

    def _merge_ride(self, ride_id: str, doc: Optional[Document]) -> None:
        session = self.session
        if session.active_ride_id != ride_id:
            return
        if doc is None:
            logger.warning("Ride %s not found in store", ride_id)
            session.last_error = RideNotFound("Ride not found").message
            self._notify()
            return
        try:
            ride = Ride.from_document(doc)
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed push for ride %s: %r", ride_id, doc)
            return

        previous = session.status
        if (
            previous is not None
            and ride.status != previous
            and ride.status not in RIDE_TRANSITIONS.get(previous, set())
        ):
            logger.warning(
                "Ride %s jumped from %s to %s", ride_id, previous.value, ride.status.value
            )

        session.status = ride.status
        session.is_finding_driver = ride.status == RideStatus.PENDING

        if ride.status in TERMINAL_STATUSES:
            self._close(DRIVER)
            self._schedule_reset(ride_id)
        elif ride.driver_id:
            if self.subscription_target(DRIVER) != ride.driver_id:
                if session.driver_id != ride.driver_id:
                    session.driver = None
                    session.driver_location = None
                try:
                    self._open_driver_subscription(ride.driver_id)
                except StoreUnavailable as e:
                    session.last_error = e.message
        elif self.subscription_target(DRIVER) is not None:
            self._close(DRIVER)
            session.driver = None
            session.driver_location = None

        session.driver_id = ride.driver_id
        self._notify()

    def _merge_driver(self, driver_id: str, doc: Optional[Document]) -> None:
        session = self.session
        if doc is None:
            logger.warning("Driver %s not found in store", driver_id)
            return
        try:
            profile = DriverProfile.from_document(doc)
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed push for driver %s: %r", driver_id, doc)
            return
        session.driver = profile
        if profile.location is not None:
            session.driver_location = profile.location
        self._notify()

    def _schedule_reset(self, ride_id: str) -> None:
        if self._reset_handle is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._reset_if_current(ride_id)
            return
        self._reset_handle = loop.call_later(
            self.reset_delay, self._reset_if_current, ride_id
        )

    def _reset_if_current(self, ride_id: str) -> None:
        self._reset_handle = None
        if self.session.active_ride_id == ride_id:
            self.reset_ride()

    # ── Ride actions ──────────────────────────────────────────────

    async def cancel_ride(self, reason: Optional[str] = None) -> None:
        session = self.session
        ride_id = session.active_ride_id
        if not ride_id:
            self._fail(NoActiveRide("No active ride to cancel"))
        if session.status == RideStatus.CANCELLED or self._cancel_requested == ride_id:
            return
        if session.status == RideStatus.COMPLETED:
            self._fail(InvalidStateTransition("This ride is already completed"))

        self._cancel_requested = ride_id
        try:
            await self.rides.update(
                ride_id,
                {
                    "status": RideStatus.CANCELLED.value,
                    "cancelledAt": SERVER_TIMESTAMP,
                    "cancellationReason": reason or "Cancelled by passenger",
                    "cancelledBy": "passenger",
                    "updatedAt": SERVER_TIMESTAMP,
                },
            )
        except NotFound:
            self._cancel_requested = None
            self._fail(RideNotFound("Ride not found"))
        except StoreUnavailable as e:
            self._cancel_requested = None
            self._fail(e)
        logger.info("Cancellation requested for %s", ride_id)

    async def rate_ride(
        self, stars: int, review: Optional[str] = None, ride_id: Optional[str] = None
    ) -> None:
        """Rate the active ride, or the passenger's own completed ride *ride_id*."""
        past_ride = ride_id is not None and ride_id != self.session.active_ride_id
        ride_id = ride_id or self.session.active_ride_id
        if not ride_id:
            self._fail(NoActiveRide("No ride to rate"))
        if isinstance(stars, bool) or not isinstance(stars, int) or not 1 <= stars <= 5:
            self._fail(InvalidRating("Rating must be a whole number from 1 to 5"))
        if past_ride:
            await self._check_rateable(ride_id)

        try:
            await self.rides.update(
                ride_id,
                {
                    "rating": stars,
                    "review": review,
                    "ratedAt": SERVER_TIMESTAMP,
                    "updatedAt": SERVER_TIMESTAMP,
                },
            )
        except NotFound:
            self._fail(RideNotFound("Ride not found"))
        except StoreUnavailable as e:
            self._fail(e)

    async def _check_rateable(self, ride_id: str) -> None:
        try:
            doc = await self.rides.get(ride_id)
        except StoreUnavailable as e:
            self._fail(e)
        user_id = self._current_user()
        if doc is None or not user_id or doc.get("passengerId") != user_id:
            self._fail(RideNotFound("Ride not found"))
        if doc.get("status") != RideStatus.COMPLETED.value:
            self._fail(InvalidStateTransition("Only completed rides can be rated"))

    async def ride_history(self, limit: Optional[int] = None) -> list[Document]:
        user_id = self._current_user()
        if not user_id:
            return []
        try:
            return await self.rides.history(user_id, limit or settings.ride_history_limit)
        except StoreUnavailable as e:
            self._fail(e)

    # ── Teardown ──────────────────────────────────────────────────

    def reset_booking(self) -> None:
        self.session.clear_booking()
        self._notify()

    def reset_ride(self) -> None:
        for kind in list(self._subscriptions):
            self._close(kind)
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None
        self._cancel_requested = None
        self.session = RideSession()
        self._notify()

    def close(self) -> None:
        self.reset_ride()
        self._auth_unsubscribe()
        self._listeners.clear()

    def _on_auth_changed(self, user_id: Optional[str]) -> None:
        if user_id != self._user_id:
            self._user_id = user_id
            self.reset_ride()
