"""
Driver Inbox Fanout
===================

Broadcast (default)
-------------------
One pending ``DriverOffer`` per online, available driver (bounded by
``dispatch_max_drivers``), all written in the caller's transaction with the
same snapshot of the request and the same deadline.  The offers are written
only after a guarded write on the request row confirms it is still ``open``,
so a dispatch that loses to an acceptance leaves nothing behind.  The
request itself stays ``open`` until a driver wins the acceptance race or the
reaper expires it.

Direct assignment
-----------------
The first driver that can be claimed is bound straight away: the trip is
minted in ``driver_assigned``, the request is matched, and a pending offer
carrying the trip id waits for the driver's confirmation.  An unconfirmed
offer is failed to ``no_driver_available`` by the reaper.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.entities import Caller, require_status
from src.domain.enums import OfferStatus, TripRequestStatus, TripStatus
from src.domain.errors import ForbiddenError, NotFoundError
from src.infrastructure.database import unit_of_work
from src.infrastructure.models import (
    DriverOfferModel,
    TripModel,
    TripRequestModel,
    new_id,
    utcnow,
)
from src.infrastructure.repositories import (
    DriverOfferRepository,
    DriverRepository,
    TripRepository,
    TripRequestRepository,
)
from src.services.events import log_trip_event

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    dispatched_to: int = 0
    driver_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DirectAssignment:
    trip_id: str
    driver_id: str


def offer_deadline(now: datetime) -> datetime:
    return now + timedelta(seconds=settings.offer_response_window_seconds)


def _offer_for(
    request: TripRequestModel,
    driver_id: str,
    now: datetime,
    trip_id: Optional[str] = None,
) -> DriverOfferModel:
    return DriverOfferModel(
        id=new_id(),
        driver_id=driver_id,
        request_id=request.id,
        trip_id=trip_id,
        passenger_id=request.passenger_id,
        pickup_lat=request.pickup_lat,
        pickup_lng=request.pickup_lng,
        dropoff_lat=request.dropoff_lat,
        dropoff_lng=request.dropoff_lng,
        estimated_distance_km=request.estimated_distance_km,
        estimated_duration_min=request.estimated_duration_min,
        estimated_price_ils=request.estimated_price_ils,
        status=OfferStatus.PENDING,
        created_at=now,
        expires_at=offer_deadline(now),
    )


async def fan_out(
    session: AsyncSession, request: TripRequestModel, now: datetime
) -> list[str]:
    """Write offers for every eligible driver.  Does not commit."""
    drivers = await DriverRepository(session).get_online_available(
        limit=settings.dispatch_max_drivers
    )
    offers = DriverOfferRepository(session)
    already = await offers.driver_ids_for_request(request.id)
    targets = [d.id for d in drivers if d.id not in already]

    if not targets:
        logger.warning("No online drivers found for dispatch of request %s", request.id)
        return []

    # Offers exist only while the request is open; an accept may have won meanwhile
    requests = TripRequestRepository(session)
    if not await requests.hold_open(request.id):
        require_status(
            await requests.current_status(request.id),
            TripRequestStatus.OPEN,
            "dispatch trip request",
        )
        raise ForbiddenError("Cannot dispatch trip request: request changed concurrently")

    await offers.create_many(_offer_for(request, driver_id, now) for driver_id in targets)
    logger.info(
        "Trip request %s dispatched to %d driver(s)", request.id, len(targets)
    )
    return targets


async def assign_direct(
    session: AsyncSession, request: TripRequestModel, now: datetime
) -> Optional[DirectAssignment]:
    """Bind the first claimable driver to a fresh trip.  Does not commit."""
    driver_repo = DriverRepository(session)
    candidates = await driver_repo.get_online_available(
        limit=settings.dispatch_max_drivers
    )

    trip_id = new_id()
    driver_id = None
    for candidate in candidates:
        if await driver_repo.occupy(candidate.id, trip_id=trip_id, now=now):
            driver_id = candidate.id
            break
    if driver_id is None:
        logger.warning("No driver could be claimed for request %s", request.id)
        return None

    if not await TripRequestRepository(session).mark_matched(
        request.id, driver_id=driver_id, trip_id=trip_id, now=now
    ):
        raise ForbiddenError("Trip request is no longer available")

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
            status=TripStatus.DRIVER_ASSIGNED,
            created_at=request.created_at,
            matched_at=now,
            updated_at=now,
        )
    )
    await DriverOfferRepository(session).create_many(
        [_offer_for(request, driver_id, now, trip_id=trip_id)]
    )
    log_trip_event(
        "TRIP_MATCHED", trip_id, request_id=request.id, driver_id=driver_id, mode="direct"
    )
    return DirectAssignment(trip_id=trip_id, driver_id=driver_id)


async def dispatch_trip_request(
    session: AsyncSession, caller: Caller, request_id: str
) -> DispatchResult:
    async with unit_of_work(session):
        requests = TripRequestRepository(session)
        await requests.lock(request_id)
        request = await requests.get_by_id(request_id)
        if request is None:
            raise NotFoundError("Trip request", request_id)
        if request.passenger_id != caller.user_id and not caller.is_operator:
            raise ForbiddenError("You are not the passenger of this trip request")
        require_status(request.status, TripRequestStatus.OPEN, "dispatch trip request")

        driver_ids = await fan_out(session, request, utcnow())
    return DispatchResult(dispatched_to=len(driver_ids), driver_ids=driver_ids)
