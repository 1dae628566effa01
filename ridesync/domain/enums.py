"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    ACCEPTED = "accepted"
    ARRIVING = "arriving"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[RideStatus] = frozenset(
    {RideStatus.COMPLETED, RideStatus.CANCELLED}
)

# No driver is assigned while the ride sits in one of these
UNASSIGNED_STATUSES: frozenset[RideStatus] = frozenset(
    {RideStatus.PENDING, RideStatus.SCHEDULED}
)

# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.PENDING: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.SCHEDULED: {
        RideStatus.PENDING,
        RideStatus.ACCEPTED,
        RideStatus.CANCELLED,
    },
    RideStatus.ACCEPTED: {
        RideStatus.ARRIVING,
        RideStatus.ARRIVED,
        RideStatus.CANCELLED,
    },
    RideStatus.ARRIVING: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}


class VehicleType(str, enum.Enum):
    MOTORCYCLE = "motorcycle"
    CAR = "car"
    VAN = "van"
    DELIVERY = "delivery"
    HAPPY_MOVE = "happy_move"
    AIRPORT = "airport"


class DiscountKind(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_DELIVERY = "free_delivery"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    GCASH = "gcash"
    WALLET = "wallet"


class ErrorKind(str, enum.Enum):
    INVALID_INPUT = "invalid_input"
    UNAUTHENTICATED = "unauthenticated"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"
    NOT_APPLICABLE = "not_applicable"
    BELOW_MINIMUM = "below_minimum"
    INVALID_COORDINATES = "invalid_coordinates"
    INCOMPLETE_BOOKING = "incomplete_booking"
    NO_ACTIVE_RIDE = "no_active_ride"
    INVALID_TRANSITION = "invalid_transition"
    STORE_UNAVAILABLE = "store_unavailable"
