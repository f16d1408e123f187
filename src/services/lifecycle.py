"""
Trip Lifecycle State Machine
============================

::

    driver_assigned -> accepted -> driver_arrived -> in_progress -> completed -> rated

Every step is one transaction that first checks ownership and the single
required predecessor status, then CASes the status column.  Checks run
before any write, and a lost CAS re-reads the status and reports it, so a
failed call never leaves partial state behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import (
    Caller,
    ensure_trip_transition,
    require_status,
)
from src.domain.enums import TripStatus
from src.domain.errors import ForbiddenError, NotFoundError, ValidationError
from src.infrastructure.database import unit_of_work
from src.infrastructure.models import RatingModel, TripModel, utcnow
from src.infrastructure.repositories import (
    DriverOfferRepository,
    DriverRepository,
    RatingRepository,
    TripRepository,
)
from src.services.events import log_trip_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    success: bool
    status: TripStatus
    final_price_ils: Optional[int] = None


@dataclass(frozen=True)
class RatingResult:
    success: bool
    rating_id: str


async def load_trip(session: AsyncSession, trip_id: str) -> TripModel:
    trip = await TripRepository(session).get_by_id(trip_id)
    if trip is None:
        raise NotFoundError("Trip", trip_id)
    return trip


def ensure_driver(trip: TripModel, caller: Caller) -> None:
    if trip.driver_id != caller.user_id:
        raise ForbiddenError("You are not assigned to this trip")


def ensure_passenger(trip: TripModel, caller: Caller) -> None:
    if trip.passenger_id != caller.user_id:
        raise ForbiddenError("You are not the passenger of this trip")


async def advance(
    session: AsyncSession,
    trip: TripModel,
    *,
    expected: TripStatus,
    target: TripStatus,
    action: str,
    now: datetime,
    **values,
) -> None:
    """Predecessor check + CAS.  Caller owns the transaction."""
    ensure_trip_transition(expected, target)
    require_status(trip.status, expected, action)

    trips = TripRepository(session)
    if not await trips.transition(
        trip.id, expected=expected, target=target, updated_at=now, **values
    ):
        actual = await trips.current_status(trip.id)
        require_status(actual, expected, action)
        raise ForbiddenError(f"Cannot {action}: trip changed concurrently")


async def _driver_step(
    session: AsyncSession,
    caller: Caller,
    trip_id: str,
    *,
    expected: TripStatus,
    target: TripStatus,
    stamp: str,
    action: str,
    event: str,
) -> TripModel:
    async with unit_of_work(session):
        trip = await load_trip(session, trip_id)
        ensure_driver(trip, caller)
        now = utcnow()
        require_status(trip.status, expected, action)
        if target == TripStatus.ACCEPTED:
            # Offer row first, the same lock order the reaper takes
            await DriverOfferRepository(session).mark_accepted(
                driver_id=trip.driver_id, request_id=trip.request_id, now=now
            )
        await advance(
            session,
            trip,
            expected=expected,
            target=target,
            action=action,
            now=now,
            **{stamp: now},
        )
    log_trip_event(event, trip_id, driver_id=caller.user_id)
    return trip


async def confirm_trip(session: AsyncSession, caller: Caller, trip_id: str) -> TransitionResult:
    """Driver confirms an assigned trip: driver_assigned -> accepted."""
    await _driver_step(
        session,
        caller,
        trip_id,
        expected=TripStatus.DRIVER_ASSIGNED,
        target=TripStatus.ACCEPTED,
        stamp="accepted_at",
        action="accept trip",
        event="TRIP_ACCEPTED",
    )
    return TransitionResult(success=True, status=TripStatus.ACCEPTED)


async def driver_arrived(session: AsyncSession, caller: Caller, trip_id: str) -> TransitionResult:
    await _driver_step(
        session,
        caller,
        trip_id,
        expected=TripStatus.ACCEPTED,
        target=TripStatus.DRIVER_ARRIVED,
        stamp="arrived_at",
        action="mark arrived",
        event="TRIP_ARRIVED",
    )
    return TransitionResult(success=True, status=TripStatus.DRIVER_ARRIVED)


async def start_trip(session: AsyncSession, caller: Caller, trip_id: str) -> TransitionResult:
    await _driver_step(
        session,
        caller,
        trip_id,
        expected=TripStatus.DRIVER_ARRIVED,
        target=TripStatus.IN_PROGRESS,
        stamp="started_at",
        action="start trip",
        event="TRIP_STARTED",
    )
    return TransitionResult(success=True, status=TripStatus.IN_PROGRESS)


async def complete_trip(session: AsyncSession, caller: Caller, trip_id: str) -> TransitionResult:
    """in_progress -> completed.  v1 final price is the estimated price."""
    async with unit_of_work(session):
        trip = await load_trip(session, trip_id)
        ensure_driver(trip, caller)
        now = utcnow()
        final_price = trip.estimated_price_ils
        await advance(
            session,
            trip,
            expected=TripStatus.IN_PROGRESS,
            target=TripStatus.COMPLETED,
            action="complete trip",
            now=now,
            completed_at=now,
            final_price_ils=final_price,
        )
        released = await DriverRepository(session).release(
            trip.driver_id, trip_id=trip.id, now=now
        )
    log_trip_event(
        "TRIP_COMPLETED",
        trip_id,
        driver_id=caller.user_id,
        final_price_ils=final_price,
        driver_released=released,
    )
    return TransitionResult(
        success=True, status=TripStatus.COMPLETED, final_price_ils=final_price
    )


async def submit_rating(
    session: AsyncSession,
    caller: Caller,
    trip_id: str,
    rating: int,
    comment: Optional[str] = None,
) -> RatingResult:
    """Passenger rates a completed trip, exactly once: completed -> rated."""
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5", details={"rating": rating})

    async with unit_of_work(session):
        trip = await load_trip(session, trip_id)
        ensure_passenger(trip, caller)

        ratings = RatingRepository(session)
        if await ratings.get_by_trip(trip_id) is not None:
            logger.warning("Rating already exists for trip %s", trip_id)
            raise ForbiddenError("A rating has already been submitted for this trip")

        now = utcnow()
        await advance(
            session,
            trip,
            expected=TripStatus.COMPLETED,
            target=TripStatus.RATED,
            action="rate trip",
            now=now,
            rated_at=now,
        )
        await ratings.create(
            RatingModel(
                trip_id=trip_id,
                passenger_id=trip.passenger_id,
                driver_id=trip.driver_id,
                rating=rating,
                comment=comment or None,
                created_at=now,
            )
        )
    log_trip_event("TRIP_RATED", trip_id, passenger_id=caller.user_id, rating=rating)
    return RatingResult(success=True, rating_id=trip_id)


async def get_trip(session: AsyncSession, caller: Caller, trip_id: str) -> TripModel:
    trip = await load_trip(session, trip_id)
    if caller.is_operator or caller.user_id in (trip.passenger_id, trip.driver_id):
        return trip
    raise ForbiddenError("You are not a party to this trip")
