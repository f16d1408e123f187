"""
Cancellation Handler
====================

Passenger and driver may back out while the trip is ``driver_assigned`` or
``accepted``; a manager may force-cancel any active trip.  Each path is one
transaction: CAS the trip to its cancelled status, release the driver if
still bound to this trip, and retract the driver's pending offer for it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import Caller, ensure_trip_transition, require_status_in
from src.domain.enums import (
    ACTIVE_TRIP_STATUSES,
    PARTY_CANCELLABLE_STATUSES,
    TripStatus,
)
from src.domain.errors import ForbiddenError
from src.infrastructure.database import unit_of_work
from src.infrastructure.models import utcnow
from src.infrastructure.repositories import (
    DriverOfferRepository,
    DriverRepository,
    TripRepository,
)
from src.services.lifecycle import ensure_driver, ensure_passenger, load_trip
from src.services.events import log_trip_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancelResult:
    trip_id: str
    cancelled: bool = True


async def _cancel(
    session: AsyncSession,
    caller: Caller,
    trip_id: str,
    *,
    target: TripStatus,
    allowed: frozenset,
    reason: str,
    check_owner,
) -> CancelResult:
    async with unit_of_work(session):
        trip = await load_trip(session, trip_id)
        if check_owner is not None:
            check_owner(trip, caller)
        require_status_in(trip.status, allowed, "cancel trip")
        ensure_trip_transition(trip.status, target)

        now = utcnow()
        # Offers before the trip row, the order confirmation and the reaper use
        retracted = await DriverOfferRepository(session).cancel_for_trip(
            driver_id=trip.driver_id, trip_id=trip.id, request_id=trip.request_id, now=now
        )
        trips = TripRepository(session)
        expected = TripStatus(trip.status)
        if not await trips.transition(
            trip.id,
            expected=expected,
            target=target,
            cancelled_at=now,
            cancellation_reason=reason,
            cancelled_by=caller.user_id,
            updated_at=now,
        ):
            require_status_in(await trips.current_status(trip.id), allowed, "cancel trip")
            raise ForbiddenError("Cannot cancel trip: trip changed concurrently")

        released = await DriverRepository(session).release(
            trip.driver_id, trip_id=trip.id, now=now
        )

    log_trip_event(
        "TRIP_CANCELLED",
        trip_id,
        status=target.value,
        previous_status=expected.value,
        cancelled_by=caller.user_id,
        reason=reason,
        driver_released=released,
        retracted_offers=retracted,
    )
    return CancelResult(trip_id=trip_id)


async def passenger_cancel_trip(
    session: AsyncSession, caller: Caller, trip_id: str, reason: Optional[str] = None
) -> CancelResult:
    return await _cancel(
        session,
        caller,
        trip_id,
        target=TripStatus.CANCELLED_BY_PASSENGER,
        allowed=PARTY_CANCELLABLE_STATUSES,
        reason=reason or "passenger_cancelled",
        check_owner=ensure_passenger,
    )


async def driver_cancel_trip(
    session: AsyncSession, caller: Caller, trip_id: str, reason: Optional[str] = None
) -> CancelResult:
    return await _cancel(
        session,
        caller,
        trip_id,
        target=TripStatus.CANCELLED_BY_DRIVER,
        allowed=PARTY_CANCELLABLE_STATUSES,
        reason=reason or "driver_cancelled",
        check_owner=ensure_driver,
    )


async def manager_force_cancel_trip(
    session: AsyncSession, caller: Caller, trip_id: str, reason: Optional[str] = None
) -> CancelResult:
    """Operator override: any active trip -> cancelled_by_system."""
    if not caller.is_operator:
        raise ForbiddenError("Only managers can force cancel trips")
    logger.warning("Manager %s force-cancelling trip %s", caller.user_id, trip_id)
    return await _cancel(
        session,
        caller,
        trip_id,
        target=TripStatus.CANCELLED_BY_SYSTEM,
        allowed=ACTIVE_TRIP_STATUSES,
        reason=reason or "manager_override",
        check_owner=None,
    )
