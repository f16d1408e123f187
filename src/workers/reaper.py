"""
Expiry Reaper
=============

Runs every ``REAPER_INTERVAL_SECONDS`` (default 60 s).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance sweeps at a time
  across multiple API processes.
* Every record is handled in its own transaction behind a CAS on its status,
  so a sweep racing an acceptance (or another sweep that slipped past the
  lock after a TTL lapse) changes nothing the other side already decided.

Algorithm per sweep
-------------------
1. Range-scan pending offers whose ``expires_at`` has passed.
2. For each: CAS the offer ``pending -> expired`` (zero rows means it was
   already handled, skip).  If the offer carries a direct-assignment trip
   still in ``driver_assigned``, fail that trip to ``no_driver_available``
   and free its driver.  If the parent request is still ``open`` and no
   other live offer remains, expire the request.
3. Expire ``open`` requests older than ``REQUEST_TIMEOUT_SECONDS`` that hold
   no pending offer at all (never dispatched, or no driver was online).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.domain.enums import TripStatus
from src.infrastructure.database import async_session_factory, unit_of_work
from src.infrastructure.locks import DistributedLock, LockNotAcquired
from src.infrastructure.models import DriverOfferModel, utcnow
from src.infrastructure.redis_client import get_redis
from src.infrastructure.repositories import (
    DriverOfferRepository,
    DriverRepository,
    TripRepository,
    TripRequestRepository,
)
from src.services.events import log_trip_event

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


@dataclass
class SweepResult:
    expired_offers: int = 0
    expired_requests: int = 0
    failed_trips: int = 0
    skipped: int = 0
    errors: int = 0


# ── Public API ────────────────────────────────────────────────────────


async def start_reaper_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info("Expiry reaper started (interval=%ds)", settings.reaper_interval_seconds)


async def stop_reaper_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Expiry reaper stopped")


async def run_expiry_sweep() -> Optional[SweepResult]:
    """One locked sweep.  Returns None when another instance holds the lock."""
    redis = await get_redis()
    lock = DistributedLock(
        redis, "expiry_reaper", ttl_seconds=max(settings.reaper_interval_seconds, 30)
    )

    try:
        async with lock:
            return await expire_driver_offers(async_session_factory)
    except LockNotAcquired:
        logger.debug("Expiry lock held by another worker, skipping sweep")
        return None


async def expire_driver_offers(
    session_factory: async_sessionmaker[AsyncSession],
    now: Optional[datetime] = None,
) -> SweepResult:
    now = now or utcnow()
    result = SweepResult()

    async with session_factory() as session:
        expired = await DriverOfferRepository(session).get_expired_pending(now)
        # Detach plain values before the read session closes
        candidates = [_OfferRef.of(o) for o in expired]

    for ref in candidates:
        try:
            async with session_factory() as session:
                await _expire_offer(session, ref, now, result)
        except Exception:
            logger.exception("Failed to expire driver offer %s", ref.offer_id)
            result.errors += 1

    cutoff = now - timedelta(seconds=settings.request_timeout_seconds)
    async with session_factory() as session:
        stale = await TripRequestRepository(session).get_stale_open(cutoff)

    for request_id in stale:
        try:
            async with session_factory() as session:
                async with unit_of_work(session):
                    expired_now = await TripRequestRepository(session).mark_expired(
                        request_id, now=now
                    )
            if expired_now:
                result.expired_requests += 1
                logger.info("Trip request %s expired unanswered", request_id)
            else:
                result.skipped += 1
        except Exception:
            logger.exception("Failed to expire trip request %s", request_id)
            result.errors += 1

    if candidates or stale:
        logger.info(
            "Expiry sweep: %d offers, %d requests, %d trips failed, %d skipped, %d errors",
            result.expired_offers,
            result.expired_requests,
            result.failed_trips,
            result.skipped,
            result.errors,
        )
    return result


# ── Internals ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _OfferRef:
    offer_id: str
    driver_id: str
    request_id: str
    trip_id: Optional[str]

    @classmethod
    def of(cls, offer: DriverOfferModel) -> "_OfferRef":
        return cls(offer.id, offer.driver_id, offer.request_id, offer.trip_id)


async def _expire_offer(
    session: AsyncSession, ref: _OfferRef, now: datetime, result: SweepResult
) -> None:
    trip_failed = False
    request_expired = False

    async with unit_of_work(session):
        requests = TripRequestRepository(session)
        await requests.lock(ref.request_id)
        offers = DriverOfferRepository(session)
        if not await offers.mark_expired(ref.offer_id, now=now):
            result.skipped += 1
            return

        if ref.trip_id:
            trip_failed = await TripRepository(session).transition(
                ref.trip_id,
                expected=TripStatus.DRIVER_ASSIGNED,
                target=TripStatus.NO_DRIVER_AVAILABLE,
                cancelled_at=now,
                cancellation_reason="driver_timeout",
                updated_at=now,
            )
            if trip_failed:
                await DriverRepository(session).release(
                    ref.driver_id, trip_id=ref.trip_id, now=now
                )

        if not await offers.has_live_pending(
            ref.request_id, now, exclude_offer_id=ref.offer_id
        ):
            # Only an open request moves; a matched one is left alone
            request_expired = await requests.mark_expired(
                ref.request_id, now=now
            )

    result.expired_offers += 1
    if trip_failed:
        result.failed_trips += 1
        log_trip_event(
            "TRIP_EXPIRED",
            ref.trip_id,
            request_id=ref.request_id,
            driver_id=ref.driver_id,
            status=TripStatus.NO_DRIVER_AVAILABLE.value,
        )
    if request_expired:
        result.expired_requests += 1
        logger.info("Trip request %s expired after offer timeout", ref.request_id)


async def _loop() -> None:
    """Periodic loop: run a sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_expiry_sweep()
        except Exception:
            logger.exception("Unhandled error in expiry sweep")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.reaper_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next sweep
