"""
Trip request endpoints
======================

POST /api/v1/trip-requests                          -- passenger asks for a ride
GET  /api/v1/trip-requests/{request_id}             -- request status
POST /api/v1/trip-requests/{request_id}/dispatch    -- (re)broadcast to online drivers
POST /api/v1/trip-requests/{request_id}/accept      -- first driver to accept wins
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_caller, get_db, get_oracle
from src.api.middleware import limiter
from src.api.schemas import (
    AcceptResponse,
    DispatchResponse,
    TripRequestCreate,
    TripRequestCreated,
    TripRequestResponse,
)
from src.config import settings
from src.domain.entities import Caller
from src.infrastructure.routing import DistanceOracle
from src.services.acceptance import accept_trip_request
from src.services.dispatch import dispatch_trip_request
from src.services.estimation import TripEstimate
from src.services.requests import create_trip_request, get_trip_request

router = APIRouter(prefix="/trip-requests", tags=["trip-requests"])


@router.post(
    "",
    status_code=201,
    response_model=TripRequestCreated,
    summary="Create a trip request",
    responses={
        201: {"description": "Request stored; `searching` or `matched` (direct mode)."}
    },
)
@limiter.limit(settings.rate_limit)
async def create_request(
    request: Request,
    body: TripRequestCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    oracle: DistanceOracle = Depends(get_oracle),
):
    estimate = None
    if body.estimate is not None:
        estimate = TripEstimate(
            distance_km=body.estimate.distance_km,
            duration_min=body.estimate.duration_min,
            price_ils=body.estimate.price_ils,
        )
    return await create_trip_request(
        db,
        caller,
        body.pickup.to_domain(),
        body.dropoff.to_domain(),
        oracle,
        estimate=estimate,
    )


@router.get(
    "/{request_id}", response_model=TripRequestResponse, summary="Get a trip request"
)
@limiter.limit(settings.rate_limit)
async def get_request(
    request: Request,
    request_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await get_trip_request(db, caller, request_id)


@router.post(
    "/{request_id}/dispatch",
    response_model=DispatchResponse,
    summary="Broadcast an open request to online drivers",
)
@limiter.limit(settings.rate_limit)
async def dispatch_request(
    request: Request,
    request_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await dispatch_trip_request(db, caller, request_id)


@router.post(
    "/{request_id}/accept",
    response_model=AcceptResponse,
    summary="Accept a trip request",
    description="Exactly one driver wins; everyone else gets 403.",
)
@limiter.limit(settings.rate_limit)
async def accept_request(
    request: Request,
    request_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    trip_id = await accept_trip_request(db, caller, request_id)
    return AcceptResponse(trip_id=trip_id)
