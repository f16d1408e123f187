"""Domain enumerations and state-transition rules."""

import enum


class TripRequestStatus(str, enum.Enum):
    OPEN = "open"
    MATCHED = "matched"
    EXPIRED = "expired"


class OfferStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class TripStatus(str, enum.Enum):
    DRIVER_ASSIGNED = "driver_assigned"
    ACCEPTED = "accepted"
    DRIVER_ARRIVED = "driver_arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    RATED = "rated"
    CANCELLED_BY_PASSENGER = "cancelled_by_passenger"
    CANCELLED_BY_DRIVER = "cancelled_by_driver"
    CANCELLED_BY_SYSTEM = "cancelled_by_system"
    NO_DRIVER_AVAILABLE = "no_driver_available"


class UserRole(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    MANAGER = "manager"
    ADMIN = "admin"


_CANCELLED = {
    TripStatus.CANCELLED_BY_PASSENGER,
    TripStatus.CANCELLED_BY_DRIVER,
    TripStatus.CANCELLED_BY_SYSTEM,
}

# State machine: maps current status -> set of valid next statuses
TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.DRIVER_ASSIGNED: {
        TripStatus.ACCEPTED,
        TripStatus.NO_DRIVER_AVAILABLE,
        *_CANCELLED,
    },
    TripStatus.ACCEPTED: {TripStatus.DRIVER_ARRIVED, *_CANCELLED},
    TripStatus.DRIVER_ARRIVED: {
        TripStatus.IN_PROGRESS,
        TripStatus.CANCELLED_BY_SYSTEM,
    },
    TripStatus.IN_PROGRESS: {TripStatus.COMPLETED, TripStatus.CANCELLED_BY_SYSTEM},
    TripStatus.COMPLETED: {TripStatus.RATED},
    TripStatus.RATED: set(),
    TripStatus.CANCELLED_BY_PASSENGER: set(),
    TripStatus.CANCELLED_BY_DRIVER: set(),
    TripStatus.CANCELLED_BY_SYSTEM: set(),
    TripStatus.NO_DRIVER_AVAILABLE: set(),
}

TRIP_REQUEST_TRANSITIONS: dict[TripRequestStatus, set[TripRequestStatus]] = {
    TripRequestStatus.OPEN: {TripRequestStatus.MATCHED, TripRequestStatus.EXPIRED},
    TripRequestStatus.MATCHED: set(),
    TripRequestStatus.EXPIRED: set(),
}

# A driver bound to a trip in one of these is unavailable
ACTIVE_TRIP_STATUSES = frozenset(
    {
        TripStatus.DRIVER_ASSIGNED,
        TripStatus.ACCEPTED,
        TripStatus.DRIVER_ARRIVED,
        TripStatus.IN_PROGRESS,
    }
)

TERMINAL_TRIP_STATUSES = frozenset(
    {
        TripStatus.COMPLETED,
        TripStatus.RATED,
        TripStatus.NO_DRIVER_AVAILABLE,
        *_CANCELLED,
    }
)

# Passenger / driver may only back out before the driver has arrived
PARTY_CANCELLABLE_STATUSES = frozenset(
    {TripStatus.DRIVER_ASSIGNED, TripStatus.ACCEPTED}
)

OPERATOR_ROLES = frozenset({UserRole.MANAGER, UserRole.ADMIN})
