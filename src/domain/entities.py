"""
Domain value objects and the trip state machine.

Patterns used
-------------
- **State Pattern** on trips and trip requests: ``ensure_trip_transition``
  enforces the lifecycle graph in ``enums.TRIP_TRANSITIONS`` and
  ``require_status`` enforces the single predecessor each action expects.
- ``Caller`` is the authenticated identity handed to every mutating service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .enums import (
    OPERATOR_ROLES,
    TRIP_REQUEST_TRANSITIONS,
    TRIP_TRANSITIONS,
    TripRequestStatus,
    TripStatus,
    UserRole,
)
from .errors import ForbiddenError


class InvalidStateTransition(ForbiddenError):
    """Raised when a status change violates the state machine."""


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float


@dataclass(frozen=True)
class RouteEstimate:
    distance_km: float
    duration_min: float
    source: str = "haversine"


@dataclass(frozen=True)
class Caller:
    user_id: str
    role: Optional[UserRole] = None

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES


# ── State machine ─────────────────────────────────────────────────────


def _value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


def ensure_trip_transition(current: TripStatus, target: TripStatus) -> None:
    """Raise unless *current* -> *target* is an edge of the lifecycle graph."""
    current, target = TripStatus(current), TripStatus(target)
    if target not in TRIP_TRANSITIONS.get(current, set()):
        raise InvalidStateTransition(
            f"Cannot transition trip from '{current.value}' to '{target.value}'"
        )


def ensure_request_transition(
    current: TripRequestStatus, target: TripRequestStatus
) -> None:
    current, target = TripRequestStatus(current), TripRequestStatus(target)
    if target not in TRIP_REQUEST_TRANSITIONS.get(current, set()):
        raise InvalidStateTransition(
            f"Cannot transition trip request from '{current.value}' to '{target.value}'"
        )


def require_status(current, expected, action: str) -> None:
    """Predecessor check: the message names both the actual and expected status."""
    if _value(current) != _value(expected):
        raise InvalidStateTransition(
            f"Cannot {action} from status '{_value(current)}'. "
            f"Expected '{_value(expected)}'.",
            details={"status": _value(current), "expected": _value(expected)},
        )


def require_status_in(current, allowed, action: str) -> None:
    values = sorted(_value(s) for s in allowed)
    if _value(current) not in values:
        raise InvalidStateTransition(
            f"Cannot {action} with status '{_value(current)}'. "
            f"Expected one of: {', '.join(values)}.",
            details={"status": _value(current), "expected": values},
        )
