"""
Trip endpoints
==============

POST /api/v1/trips/estimate                 -- distance, duration and fare (no auth)
GET  /api/v1/trips/{trip_id}                -- trip as seen by a party or manager
POST /api/v1/trips/{trip_id}/confirm        -- driver: driver_assigned -> accepted
POST /api/v1/trips/{trip_id}/arrived        -- driver: accepted -> driver_arrived
POST /api/v1/trips/{trip_id}/start          -- driver: driver_arrived -> in_progress
POST /api/v1/trips/{trip_id}/complete       -- driver: in_progress -> completed
POST /api/v1/trips/{trip_id}/rating         -- passenger: completed -> rated
POST /api/v1/trips/{trip_id}/cancel/passenger
POST /api/v1/trips/{trip_id}/cancel/driver
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_caller, get_db, get_oracle
from src.api.middleware import limiter
from src.api.schemas import (
    CancelRequest,
    CancelResponse,
    EstimateRequest,
    EstimateResponse,
    RatingCreate,
    RatingResponse,
    TransitionResponse,
    TripResponse,
)
from src.config import settings
from src.domain.entities import Caller
from src.infrastructure.routing import DistanceOracle
from src.services import cancellation, lifecycle
from src.services.estimation import estimate_trip

router = APIRouter(prefix="/trips", tags=["trips"])


@router.post("/estimate", response_model=EstimateResponse, summary="Estimate a trip")
@limiter.limit(settings.rate_limit)
async def estimate(
    request: Request,
    body: EstimateRequest,
    oracle: DistanceOracle = Depends(get_oracle),
):
    return await estimate_trip(oracle, body.pickup.to_domain(), body.dropoff.to_domain())


@router.get("/{trip_id}", response_model=TripResponse, summary="Get a trip")
@limiter.limit(settings.rate_limit)
async def get_trip(
    request: Request,
    trip_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await lifecycle.get_trip(db, caller, trip_id)


@router.post(
    "/{trip_id}/confirm",
    response_model=TransitionResponse,
    summary="Driver confirms an assigned trip",
)
@limiter.limit(settings.rate_limit)
async def confirm_trip(
    request: Request,
    trip_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await lifecycle.confirm_trip(db, caller, trip_id)


@router.post(
    "/{trip_id}/arrived",
    response_model=TransitionResponse,
    summary="Driver reached the pickup point",
)
@limiter.limit(settings.rate_limit)
async def driver_arrived(
    request: Request,
    trip_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await lifecycle.driver_arrived(db, caller, trip_id)


@router.post("/{trip_id}/start", response_model=TransitionResponse, summary="Start a trip")
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    trip_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await lifecycle.start_trip(db, caller, trip_id)


@router.post(
    "/{trip_id}/complete",
    response_model=TransitionResponse,
    summary="Complete a trip",
    description="Sets the final price to the estimated price and frees the driver.",
)
@limiter.limit(settings.rate_limit)
async def complete_trip(
    request: Request,
    trip_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await lifecycle.complete_trip(db, caller, trip_id)


@router.post(
    "/{trip_id}/rating",
    response_model=RatingResponse,
    summary="Rate a completed trip (once)",
)
@limiter.limit(settings.rate_limit)
async def submit_rating(
    request: Request,
    trip_id: str,
    body: RatingCreate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await lifecycle.submit_rating(db, caller, trip_id, body.rating, body.comment)


@router.post(
    "/{trip_id}/cancel/passenger",
    response_model=CancelResponse,
    summary="Passenger cancels before the driver arrives",
)
@limiter.limit(settings.rate_limit)
async def passenger_cancel(
    request: Request,
    trip_id: str,
    body: Optional[CancelRequest] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await cancellation.passenger_cancel_trip(
        db, caller, trip_id, body.reason if body else None
    )


@router.post(
    "/{trip_id}/cancel/driver",
    response_model=CancelResponse,
    summary="Driver cancels before arriving",
)
@limiter.limit(settings.rate_limit)
async def driver_cancel(
    request: Request,
    trip_id: str,
    body: Optional[CancelRequest] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await cancellation.driver_cancel_trip(
        db, caller, trip_id, body.reason if body else None
    )
