"""Service-level tests for the trip lifecycle and cancellations."""

import pytest
import pytest_asyncio

from src.config import settings
from src.domain.entities import Caller
from src.domain.enums import OfferStatus, TripStatus, UserRole
from src.domain.errors import ForbiddenError, NotFoundError, ValidationError
from src.infrastructure.models import (
    DriverModel,
    DriverOfferModel,
    RatingModel,
    TripModel,
    utcnow,
)
from src.services import cancellation, lifecycle
from src.services.acceptance import accept_trip_request


@pytest_asyncio.fixture
async def matched(seed, session_factory):
    """A trip in driver_assigned: (passenger, driver, trip_id, offer_id)."""
    passenger = await seed.passenger()
    driver = await seed.driver()
    request_id = await seed.request(passenger.user_id)
    offer_id = await seed.offer(driver.user_id, request_id)
    async with session_factory() as session:
        trip_id = await accept_trip_request(session, driver, request_id)
    return passenger, driver, trip_id, offer_id


async def _run(session_factory, fn, *args, **kwargs):
    async with session_factory() as session:
        return await fn(session, *args, **kwargs)


async def _advance_to(session_factory, driver, trip_id, status):
    steps = [
        (TripStatus.ACCEPTED, lifecycle.confirm_trip),
        (TripStatus.DRIVER_ARRIVED, lifecycle.driver_arrived),
        (TripStatus.IN_PROGRESS, lifecycle.start_trip),
        (TripStatus.COMPLETED, lifecycle.complete_trip),
    ]
    for target, step in steps:
        await _run(session_factory, step, driver, trip_id)
        if target == status:
            return


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, matched, seed, session_factory):
        passenger, driver, trip_id, offer_id = matched

        confirmed = await _run(session_factory, lifecycle.confirm_trip, driver, trip_id)
        assert confirmed.status == TripStatus.ACCEPTED
        assert (await seed.get(DriverOfferModel, offer_id)).status == OfferStatus.ACCEPTED

        await _run(session_factory, lifecycle.driver_arrived, driver, trip_id)
        await _run(session_factory, lifecycle.start_trip, driver, trip_id)
        completed = await _run(session_factory, lifecycle.complete_trip, driver, trip_id)

        trip = await seed.get(TripModel, trip_id)
        assert completed.final_price_ils == trip.estimated_price_ils
        assert trip.status == TripStatus.COMPLETED
        assert trip.final_price_ils == trip.estimated_price_ils
        for stamp in ("accepted_at", "arrived_at", "started_at", "completed_at"):
            assert getattr(trip, stamp) is not None
        assert trip.accepted_at <= trip.arrived_at <= trip.started_at <= trip.completed_at

        # Completion frees the driver
        row = await seed.get(DriverModel, driver.user_id)
        assert row.is_available is True
        assert row.current_trip_id is None

        rated = await _run(
            session_factory, lifecycle.submit_rating, passenger, trip_id, 5, "Great ride"
        )
        assert rated.success is True
        assert rated.rating_id == trip_id
        trip = await seed.get(TripModel, trip_id)
        assert trip.status == TripStatus.RATED
        rating = await seed.get(RatingModel, trip_id)
        assert rating.rating == 5
        assert rating.driver_id == driver.user_id

    @pytest.mark.asyncio
    async def test_auto_confirm_on_accept(self, seed, session_factory, monkeypatch):
        monkeypatch.setattr(settings, "auto_confirm_on_accept", True)
        await seed.passenger()
        driver = await seed.driver()
        request_id = await seed.request()

        trip_id = await _run(session_factory, accept_trip_request, driver, request_id)

        trip = await seed.get(TripModel, trip_id)
        assert trip.status == TripStatus.ACCEPTED
        assert trip.accepted_at is not None
        await _run(session_factory, lifecycle.driver_arrived, driver, trip_id)


class TestOrdering:
    @pytest.mark.asyncio
    async def test_cannot_skip_a_step(self, matched, seed, session_factory):
        _, driver, trip_id, _ = matched

        with pytest.raises(ForbiddenError) as exc_info:
            await _run(session_factory, lifecycle.start_trip, driver, trip_id)

        assert exc_info.value.details == {
            "status": "driver_assigned",
            "expected": "driver_arrived",
        }
        trip = await seed.get(TripModel, trip_id)
        assert trip.status == TripStatus.DRIVER_ASSIGNED
        assert trip.started_at is None

    @pytest.mark.asyncio
    async def test_complete_before_start_leaves_no_trace(self, matched, seed, session_factory):
        _, driver, trip_id, _ = matched
        await _advance_to(session_factory, driver, trip_id, TripStatus.ACCEPTED)

        with pytest.raises(ForbiddenError, match="Expected 'in_progress'"):
            await _run(session_factory, lifecycle.complete_trip, driver, trip_id)

        trip = await seed.get(TripModel, trip_id)
        assert trip.final_price_ils is None
        assert (await seed.get(DriverModel, driver.user_id)).is_available is False

    @pytest.mark.asyncio
    async def test_repeating_a_step_is_rejected(self, matched, session_factory):
        _, driver, trip_id, _ = matched
        await _run(session_factory, lifecycle.confirm_trip, driver, trip_id)

        with pytest.raises(ForbiddenError):
            await _run(session_factory, lifecycle.confirm_trip, driver, trip_id)

    @pytest.mark.asyncio
    async def test_other_driver_cannot_advance(self, matched, seed, session_factory):
        _, _, trip_id, _ = matched
        stranger = await seed.driver("driver-other")

        with pytest.raises(ForbiddenError, match="not assigned"):
            await _run(session_factory, lifecycle.confirm_trip, stranger, trip_id)

    @pytest.mark.asyncio
    async def test_unknown_trip(self, seed, session_factory):
        driver = await seed.driver()
        with pytest.raises(NotFoundError, match="missing-trip"):
            await _run(session_factory, lifecycle.confirm_trip, driver, "missing-trip")

    @pytest.mark.asyncio
    async def test_same_session_sees_fresh_status(self, matched, db_session):
        _, driver, trip_id, _ = matched

        await lifecycle.confirm_trip(db_session, driver, trip_id)
        await lifecycle.driver_arrived(db_session, driver, trip_id)
        result = await lifecycle.start_trip(db_session, driver, trip_id)

        assert result.status == TripStatus.IN_PROGRESS


class TestRating:
    @pytest.mark.asyncio
    async def test_rating_only_once(self, matched, session_factory):
        passenger, driver, trip_id, _ = matched
        await _advance_to(session_factory, driver, trip_id, TripStatus.COMPLETED)
        await _run(session_factory, lifecycle.submit_rating, passenger, trip_id, 4)

        with pytest.raises(ForbiddenError):
            await _run(session_factory, lifecycle.submit_rating, passenger, trip_id, 1)

    @pytest.mark.asyncio
    async def test_cannot_rate_unfinished_trip(self, matched, seed, session_factory):
        passenger, _, trip_id, _ = matched

        with pytest.raises(ForbiddenError, match="Expected 'completed'"):
            await _run(session_factory, lifecycle.submit_rating, passenger, trip_id, 5)
        assert await seed.get(RatingModel, trip_id) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [0, 6, -1])
    async def test_rating_out_of_range(self, matched, session_factory, value):
        passenger, _, trip_id, _ = matched
        with pytest.raises(ValidationError):
            await _run(session_factory, lifecycle.submit_rating, passenger, trip_id, value)

    @pytest.mark.asyncio
    async def test_only_passenger_rates(self, matched, session_factory):
        _, driver, trip_id, _ = matched
        await _advance_to(session_factory, driver, trip_id, TripStatus.COMPLETED)

        with pytest.raises(ForbiddenError, match="not the passenger"):
            await _run(session_factory, lifecycle.submit_rating, driver, trip_id, 5)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_passenger_cancel_restores_driver(self, matched, seed, session_factory):
        passenger, driver, trip_id, offer_id = matched

        result = await _run(
            session_factory, cancellation.passenger_cancel_trip, passenger, trip_id
        )

        assert result.cancelled is True
        trip = await seed.get(TripModel, trip_id)
        assert trip.status == TripStatus.CANCELLED_BY_PASSENGER
        assert trip.cancellation_reason == "passenger_cancelled"
        assert trip.cancelled_by == passenger.user_id
        assert trip.cancelled_at is not None
        row = await seed.get(DriverModel, driver.user_id)
        assert row.is_available is True
        assert row.current_trip_id is None

    @pytest.mark.asyncio
    async def test_driver_cancel_with_reason(self, matched, seed, session_factory):
        _, driver, trip_id, _ = matched
        await _advance_to(session_factory, driver, trip_id, TripStatus.ACCEPTED)

        await _run(
            session_factory, cancellation.driver_cancel_trip, driver, trip_id, "flat tyre"
        )

        trip = await seed.get(TripModel, trip_id)
        assert trip.status == TripStatus.CANCELLED_BY_DRIVER
        assert trip.cancellation_reason == "flat tyre"
        assert (await seed.get(DriverModel, driver.user_id)).is_available is True

    @pytest.mark.asyncio
    async def test_direct_offer_retracted_on_cancel(self, seed, session_factory):
        passenger = await seed.passenger()
        driver = await seed.driver(available=False)
        request_id = await seed.request()
        trip_id = "trip-direct"
        async with session_factory() as session:
            now = utcnow()
            session.add(
                TripModel(
                    id=trip_id,
                    request_id=request_id,
                    passenger_id=passenger.user_id,
                    driver_id=driver.user_id,
                    pickup_lat=0, pickup_lng=0, dropoff_lat=0, dropoff_lng=0,
                    estimated_distance_km=3.0,
                    estimated_duration_min=6.0,
                    estimated_price_ils=5,
                    status=TripStatus.DRIVER_ASSIGNED,
                    created_at=now,
                    matched_at=now,
                    updated_at=now,
                )
            )
            row = await session.get(DriverModel, driver.user_id)
            row.current_trip_id = trip_id
            await session.commit()
        offer_id = await seed.offer(driver.user_id, request_id, trip_id=trip_id)

        await _run(session_factory, cancellation.passenger_cancel_trip, passenger, trip_id)

        assert (await seed.get(DriverOfferModel, offer_id)).status == OfferStatus.CANCELLED
        assert (await seed.get(DriverModel, driver.user_id)).is_available is True

    @pytest.mark.asyncio
    async def test_no_party_cancel_after_arrival(self, matched, seed, session_factory):
        passenger, driver, trip_id, _ = matched
        await _advance_to(session_factory, driver, trip_id, TripStatus.DRIVER_ARRIVED)

        with pytest.raises(ForbiddenError, match="driver_arrived"):
            await _run(session_factory, cancellation.passenger_cancel_trip, passenger, trip_id)
        with pytest.raises(ForbiddenError):
            await _run(session_factory, cancellation.driver_cancel_trip, driver, trip_id)

        assert (await seed.get(TripModel, trip_id)).status == TripStatus.DRIVER_ARRIVED

    @pytest.mark.asyncio
    async def test_stranger_cannot_cancel(self, matched, seed, session_factory):
        _, _, trip_id, _ = matched
        other = await seed.passenger("passenger-other")

        with pytest.raises(ForbiddenError, match="not the passenger"):
            await _run(session_factory, cancellation.passenger_cancel_trip, other, trip_id)

    @pytest.mark.asyncio
    async def test_manager_force_cancel_in_progress(self, matched, seed, session_factory):
        _, driver, trip_id, _ = matched
        manager = await seed.manager()
        await _advance_to(session_factory, driver, trip_id, TripStatus.IN_PROGRESS)

        await _run(session_factory, cancellation.manager_force_cancel_trip, manager, trip_id)

        trip = await seed.get(TripModel, trip_id)
        assert trip.status == TripStatus.CANCELLED_BY_SYSTEM
        assert trip.cancellation_reason == "manager_override"
        assert trip.cancelled_by == manager.user_id
        assert (await seed.get(DriverModel, driver.user_id)).is_available is True

    @pytest.mark.asyncio
    async def test_force_cancel_requires_operator(self, matched, session_factory):
        passenger, _, trip_id, _ = matched

        with pytest.raises(ForbiddenError, match="Only managers"):
            await _run(
                session_factory, cancellation.manager_force_cancel_trip, passenger, trip_id
            )

    @pytest.mark.asyncio
    async def test_force_cancel_terminal_trip_rejected(self, matched, session_factory):
        _, driver, trip_id, _ = matched
        admin = Caller("admin-1", UserRole.ADMIN)
        await _advance_to(session_factory, driver, trip_id, TripStatus.COMPLETED)

        with pytest.raises(ForbiddenError, match="completed"):
            await _run(session_factory, cancellation.manager_force_cancel_trip, admin, trip_id)

    @pytest.mark.asyncio
    async def test_cancel_twice_rejected(self, matched, session_factory):
        passenger, _, trip_id, _ = matched
        await _run(session_factory, cancellation.passenger_cancel_trip, passenger, trip_id)

        with pytest.raises(ForbiddenError):
            await _run(session_factory, cancellation.passenger_cancel_trip, passenger, trip_id)


class TestReads:
    @pytest.mark.asyncio
    async def test_parties_and_managers_can_read(self, matched, seed, session_factory):
        passenger, driver, trip_id, _ = matched
        manager = await seed.manager()

        for caller in (passenger, driver, manager):
            trip = await _run(session_factory, lifecycle.get_trip, caller, trip_id)
            assert trip.id == trip_id

    @pytest.mark.asyncio
    async def test_stranger_cannot_read(self, matched, session_factory):
        _, _, trip_id, _ = matched
        with pytest.raises(ForbiddenError):
            await _run(
                session_factory, lifecycle.get_trip, Caller("nobody", None), trip_id
            )
