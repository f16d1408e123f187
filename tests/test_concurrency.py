"""
Concurrency safety tests.

Demonstrates:
1. Exactly one of N drivers racing to accept the same request wins.
2. The loser gets a Forbidden error naming the request status, and is left
   available with no trip.
3. An acceptance racing the expiry reaper never yields a trip on an expired
   request.
4. Distributed lock prevents simultaneous acquire.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from src.domain.enums import OfferStatus, TripRequestStatus, TripStatus
from src.domain.errors import ForbiddenError
from src.infrastructure.locks import DistributedLock, LockNotAcquired
from src.infrastructure.models import (
    DriverModel,
    DriverOfferModel,
    TripModel,
    TripRequestModel,
    utcnow,
)
from src.infrastructure.repositories import DriverOfferRepository, DriverRepository
from src.services.acceptance import accept_trip_request
from src.services.dispatch import dispatch_trip_request
from src.workers.reaper import expire_driver_offers


async def _accept(session_factory, caller, request_id):
    async with session_factory() as session:
        return await accept_trip_request(session, caller, request_id)


async def _count_trips(session_factory, request_id) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(TripModel).where(
                TripModel.request_id == request_id
            )
        )
        return result.scalar_one()


class TestExclusiveAcceptance:
    @pytest.mark.asyncio
    async def test_exactly_one_of_many_drivers_wins(self, seed, session_factory):
        await seed.passenger()
        request_id = await seed.request()
        drivers = [await seed.driver(f"driver-{i}") for i in range(8)]
        for d in drivers:
            await seed.offer(d.user_id, request_id)

        results = await asyncio.gather(
            *[_accept(session_factory, d, request_id) for d in drivers],
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, str)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == len(drivers) - 1
        assert all(isinstance(e, ForbiddenError) for e in losers)
        assert all("no longer available" in e.message for e in losers)
        assert await _count_trips(session_factory, request_id) == 1

        request = await seed.get(TripRequestModel, request_id)
        trip = await seed.get(TripModel, winners[0])
        assert request.status == TripRequestStatus.MATCHED
        assert request.matched_trip_id == trip.id
        assert request.matched_driver_id == trip.driver_id

        # Only the winner is busy
        for d in drivers:
            row = await seed.get(DriverModel, d.user_id)
            if d.user_id == trip.driver_id:
                assert row.is_available is False
                assert row.current_trip_id == trip.id
            else:
                assert row.is_available is True
                assert row.current_trip_id is None

    @pytest.mark.asyncio
    async def test_sibling_offers_are_retracted(self, seed, session_factory):
        await seed.passenger()
        request_id = await seed.request()
        a = await seed.driver("driver-a")
        b = await seed.driver("driver-b")
        offer_a = await seed.offer(a.user_id, request_id)
        offer_b = await seed.offer(b.user_id, request_id)

        await _accept(session_factory, a, request_id)

        assert (await seed.get(DriverOfferModel, offer_a)).status == OfferStatus.ACCEPTED
        assert (await seed.get(DriverOfferModel, offer_b)).status == OfferStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_second_accept_after_match_is_forbidden(self, seed, session_factory):
        await seed.passenger()
        request_id = await seed.request()
        a = await seed.driver("driver-a")
        b = await seed.driver("driver-b")

        await _accept(session_factory, a, request_id)
        with pytest.raises(ForbiddenError) as exc_info:
            await _accept(session_factory, b, request_id)

        assert exc_info.value.details["status"] == "matched"
        assert (await seed.get(DriverModel, b.user_id)).is_available is True

    @pytest.mark.asyncio
    async def test_busy_driver_cannot_accept(self, seed, session_factory):
        await seed.passenger()
        request_id = await seed.request()
        busy = await seed.driver("driver-busy", available=False)

        with pytest.raises(ForbiddenError, match="active trip"):
            await _accept(session_factory, busy, request_id)

        assert (await seed.get(TripRequestModel, request_id)).status == TripRequestStatus.OPEN

    @pytest.mark.asyncio
    async def test_accept_races_reaper(self, seed, session_factory):
        """Whoever commits first decides; the request never ends up half-done."""
        await seed.passenger()
        request_id = await seed.request()
        driver = await seed.driver()
        await seed.offer(driver.user_id, request_id, expires_in=timedelta(seconds=-1))

        accept, sweep = await asyncio.gather(
            _accept(session_factory, driver, request_id),
            expire_driver_offers(session_factory, now=utcnow()),
            return_exceptions=True,
        )

        request = await seed.get(TripRequestModel, request_id)
        trips = await _count_trips(session_factory, request_id)
        if request.status == TripRequestStatus.MATCHED:
            assert isinstance(accept, str)
            assert trips == 1
            trip = await seed.get(TripModel, accept)
            assert trip.status == TripStatus.DRIVER_ASSIGNED
        else:
            assert request.status == TripRequestStatus.EXPIRED
            assert isinstance(accept, ForbiddenError)
            assert trips == 0
            assert (await seed.get(DriverModel, driver.user_id)).is_available is True
        assert not isinstance(sweep, Exception)


class TestDispatchRacingAccept:
    @pytest.mark.asyncio
    async def test_accept_between_check_and_fanout_leaves_no_offers(
        self, seed, session_factory, monkeypatch
    ):
        passenger = await seed.passenger()
        request_id = await seed.request()
        winner = await seed.driver("driver-w")
        await seed.driver("driver-y")
        await seed.driver("driver-z")

        original = DriverRepository.get_online_available
        raced = []

        async def accept_then_list(self, limit=50):
            # The accept commits after dispatch has already read the request as open
            if not raced:
                raced.append(await _accept(session_factory, winner, request_id))
            return await original(self, limit=limit)

        monkeypatch.setattr(DriverRepository, "get_online_available", accept_then_list)

        async with session_factory() as session:
            with pytest.raises(ForbiddenError) as exc_info:
                await dispatch_trip_request(session, passenger, request_id)

        assert exc_info.value.details["status"] == "matched"
        assert len(raced) == 1
        request = await seed.get(TripRequestModel, request_id)
        assert request.status == TripRequestStatus.MATCHED
        async with session_factory() as session:
            pending = await session.execute(
                select(DriverOfferModel).where(
                    DriverOfferModel.request_id == request_id,
                    DriverOfferModel.status == OfferStatus.PENDING,
                )
            )
            assert pending.scalars().all() == []

    @pytest.mark.asyncio
    async def test_dispatch_then_accept_retracts_every_offer(self, seed, session_factory):
        passenger = await seed.passenger()
        request_id = await seed.request()
        winner = await seed.driver("driver-w")
        await seed.driver("driver-y")

        async with session_factory() as session:
            result = await dispatch_trip_request(session, passenger, request_id)
        assert sorted(result.driver_ids) == ["driver-w", "driver-y"]

        await _accept(session_factory, winner, request_id)

        async with session_factory() as session:
            offers = await DriverOfferRepository(session).list_for_request(request_id)
        statuses = {o.driver_id: o.status for o in offers}
        assert statuses == {
            "driver-w": OfferStatus.ACCEPTED,
            "driver-y": OfferStatus.CANCELLED,
        }


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:test-key", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        mock_redis.eval.assert_called_once()
        assert mock_redis.eval.call_args.args[1:] == (1, "lock:test-key", lock.token)

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass

    @pytest.mark.asyncio
    async def test_release_reports_lost_ownership(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=0)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is False

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_error(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(ValueError):
            async with lock:
                raise ValueError("boom")

        mock_redis.eval.assert_awaited_once()
