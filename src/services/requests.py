"""Trip request creation and reads."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.entities import Caller, Location
from src.domain.enums import TripRequestStatus
from src.domain.errors import ForbiddenError, NotFoundError
from src.infrastructure.database import unit_of_work
from src.infrastructure.models import TripRequestModel, new_id, utcnow
from src.infrastructure.repositories import (
    DriverOfferRepository,
    TripRequestRepository,
)
from src.infrastructure.routing import DistanceOracle
from src.services.dispatch import assign_direct, fan_out
from src.services.estimation import TripEstimate, check_client_estimate, estimate_trip

logger = logging.getLogger(__name__)

SEARCHING = "searching"
MATCHED = "matched"


@dataclass(frozen=True)
class CreatedTripRequest:
    request_id: str
    status: str
    trip_id: Optional[str] = None
    driver_id: Optional[str] = None


async def create_trip_request(
    session: AsyncSession,
    caller: Caller,
    pickup: Location,
    dropoff: Location,
    oracle: DistanceOracle,
    estimate: Optional[TripEstimate] = None,
) -> CreatedTripRequest:
    # Estimation happens before the transaction starts
    if estimate is None:
        estimate = await estimate_trip(oracle, pickup, dropoff)
    else:
        check_client_estimate(estimate)

    async with unit_of_work(session):
        now = utcnow()
        request = await TripRequestRepository(session).create(
            TripRequestModel(
                id=new_id(),
                passenger_id=caller.user_id,
                pickup_lat=pickup.lat,
                pickup_lng=pickup.lng,
                dropoff_lat=dropoff.lat,
                dropoff_lng=dropoff.lng,
                estimated_distance_km=estimate.distance_km,
                estimated_duration_min=estimate.duration_min,
                estimated_price_ils=estimate.price_ils,
                status=TripRequestStatus.OPEN,
                created_at=now,
            )
        )
        logger.info(
            "Trip request %s created by passenger %s (%d ILS)",
            request.id,
            caller.user_id,
            estimate.price_ils,
        )

        if settings.dispatch_mode == "direct":
            assignment = await assign_direct(session, request, now)
            if assignment is not None:
                result = CreatedTripRequest(
                    request_id=request.id,
                    status=MATCHED,
                    trip_id=assignment.trip_id,
                    driver_id=assignment.driver_id,
                )
            else:
                result = CreatedTripRequest(request_id=request.id, status=SEARCHING)
        else:
            if settings.auto_dispatch_on_create:
                await fan_out(session, request, now)
            result = CreatedTripRequest(request_id=request.id, status=SEARCHING)
    return result


async def get_trip_request(
    session: AsyncSession, caller: Caller, request_id: str
) -> TripRequestModel:
    request = await TripRequestRepository(session).get_by_id(request_id)
    if request is None:
        raise NotFoundError("Trip request", request_id)
    if caller.is_operator or caller.user_id in (
        request.passenger_id,
        request.matched_driver_id,
    ):
        return request
    # Drivers who were offered the request may look at it too
    if caller.user_id in await DriverOfferRepository(session).driver_ids_for_request(
        request_id
    ):
        return request
    raise ForbiddenError("You are not a party to this trip request")
