"""
Acceptance Arbiter
==================

``accept_trip_request`` is the exclusivity gate: exactly one driver's
acceptance turns an open request into a bound trip.

Everything happens in one transaction:

1. Read the request (NotFound / Forbidden unless ``open``) and the caller's
   driver record (NotFound / Forbidden unless available).
2. CAS the request ``open -> matched``.  This conditional UPDATE is the only
   thing that decides a race: a concurrent acceptor blocks on the row lock,
   re-evaluates the ``status = 'open'`` guard after the winner commits, gets
   zero rows, and aborts with Forbidden.
3. Mint the trip (``driver_assigned``, or ``accepted`` when acceptance also
   counts as the driver's confirmation).
4. CAS the driver ``available -> busy`` with the new trip id.
5. Mark the winner's offer accepted and retract every sibling offer, so
   losing drivers are never left holding an actionable offer.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.entities import Caller
from src.domain.enums import TripRequestStatus, TripStatus
from src.domain.errors import ForbiddenError, NotFoundError
from src.infrastructure.database import unit_of_work
from src.infrastructure.models import TripModel, new_id, utcnow
from src.infrastructure.repositories import (
    DriverOfferRepository,
    DriverRepository,
    TripRepository,
    TripRequestRepository,
)
from src.services.events import log_trip_event

logger = logging.getLogger(__name__)


def _no_longer_available(status) -> ForbiddenError:
    value = status.value if hasattr(status, "value") else status
    return ForbiddenError(
        f"Trip request is no longer available. Status: '{value}'",
        details={"status": value, "expected": TripRequestStatus.OPEN.value},
    )


async def accept_trip_request(
    session: AsyncSession, caller: Caller, request_id: str
) -> str:
    driver_id = caller.user_id
    logger.info("Driver %s accepting trip request %s", driver_id, request_id)

    async with unit_of_work(session):
        requests = TripRequestRepository(session)
        drivers = DriverRepository(session)
        offers = DriverOfferRepository(session)

        request = await requests.get_by_id(request_id)
        if request is None:
            raise NotFoundError("Trip request", request_id)
        if request.status != TripRequestStatus.OPEN:
            raise _no_longer_available(request.status)

        driver = await drivers.get_by_id(driver_id)
        if driver is None:
            raise NotFoundError("Driver", driver_id)
        if not driver.is_available:
            raise ForbiddenError(
                "Driver already has an active trip",
                details={"currentTripId": driver.current_trip_id},
            )

        now = utcnow()
        trip_id = new_id()

        if not await requests.mark_matched(
            request_id, driver_id=driver_id, trip_id=trip_id, now=now
        ):
            raise _no_longer_available(await requests.current_status(request_id))

        confirmed = settings.auto_confirm_on_accept
        await TripRepository(session).create(
            TripModel(
                id=trip_id,
                request_id=request.id,
                passenger_id=request.passenger_id,
                driver_id=driver_id,
                pickup_lat=request.pickup_lat,
                pickup_lng=request.pickup_lng,
                dropoff_lat=request.dropoff_lat,
                dropoff_lng=request.dropoff_lng,
                estimated_distance_km=request.estimated_distance_km,
                estimated_duration_min=request.estimated_duration_min,
                estimated_price_ils=request.estimated_price_ils,
                status=TripStatus.ACCEPTED if confirmed else TripStatus.DRIVER_ASSIGNED,
                created_at=request.created_at,
                matched_at=now,
                accepted_at=now if confirmed else None,
                updated_at=now,
            )
        )

        if not await drivers.occupy(driver_id, trip_id=trip_id, now=now):
            raise ForbiddenError("Driver already has an active trip")

        await offers.mark_accepted(driver_id=driver_id, request_id=request_id, now=now)
        retracted = await offers.cancel_siblings(
            request_id, winner_driver_id=driver_id, now=now
        )

    log_trip_event(
        "TRIP_MATCHED",
        trip_id,
        request_id=request_id,
        driver_id=driver_id,
        retracted_offers=retracted,
    )
    return trip_id
