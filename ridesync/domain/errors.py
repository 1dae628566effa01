"""
Error taxonomy.

Every failure a session operation can report is one of these.  Callers
catch the typed exception; the HTTP layer maps ``kind`` to a status code.
"""

from __future__ import annotations

from typing import Any, Optional

from .enums import ErrorKind


class RideSyncError(Exception):
    """Base exception for all ride session errors."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidInput(RideSyncError):
    kind = ErrorKind.INVALID_INPUT


class InvalidRating(InvalidInput):
    """Rating outside 1..5 or not an integer."""


class Unauthenticated(RideSyncError):
    kind = ErrorKind.UNAUTHENTICATED


class NotFound(RideSyncError):
    kind = ErrorKind.NOT_FOUND


class RideNotFound(NotFound):
    """The authoritative ride record vanished or was never there."""


class RateLimited(RideSyncError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class PromoRejected(RideSyncError):
    """Base for promo-specific rejection reasons."""


class PromoInactive(PromoRejected):
    kind = ErrorKind.INACTIVE


class PromoExpired(PromoRejected):
    kind = ErrorKind.EXPIRED


class PromoLimitReached(PromoRejected):
    kind = ErrorKind.LIMIT_REACHED


class PromoNotApplicable(PromoRejected):
    kind = ErrorKind.NOT_APPLICABLE


class PromoBelowMinimum(PromoRejected):
    kind = ErrorKind.BELOW_MINIMUM


class InvalidCoordinates(RideSyncError):
    kind = ErrorKind.INVALID_COORDINATES


class IncompleteBooking(RideSyncError):
    kind = ErrorKind.INCOMPLETE_BOOKING


class NoActiveRide(RideSyncError):
    kind = ErrorKind.NO_ACTIVE_RIDE


class InvalidStateTransition(RideSyncError):
    """Raised when a ride status change violates the state machine."""

    kind = ErrorKind.INVALID_TRANSITION


class StoreUnavailable(RideSyncError):
    """The document store call itself failed."""

    kind = ErrorKind.STORE_UNAVAILABLE
