"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Status changes go through compare-and-swap helpers: a conditional
``UPDATE ... WHERE status = :expected`` whose affected-row count tells the
caller whether it won.  Zero rows means another transaction got there first
and the caller must abort rather than overwrite.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import exists, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    DriverModel,
    DriverOfferModel,
    RatingModel,
    TripModel,
    TripRequestModel,
    UserModel,
)
from src.domain.enums import OfferStatus, TripRequestStatus, TripStatus

_NO_SYNC = {"synchronize_session": False}


class TripRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, request: TripRequestModel) -> TripRequestModel:
        self.session.add(request)
        await self.session.flush()
        return request

    async def get_by_id(self, request_id: str) -> Optional[TripRequestModel]:
        return await self.session.get(
            TripRequestModel, request_id, populate_existing=True
        )

    async def current_status(self, request_id: str) -> Optional[TripRequestStatus]:
        """Fresh read of the status column, bypassing the identity map."""
        result = await self.session.execute(
            select(TripRequestModel.status).where(TripRequestModel.id == request_id)
        )
        return result.scalar_one_or_none()

    async def lock(self, request_id: str) -> None:
        """Row lock taken first by writers that also touch the request's offers."""
        await self.session.execute(
            select(TripRequestModel.id)
            .where(TripRequestModel.id == request_id)
            .with_for_update()
        )

    async def hold_open(self, request_id: str) -> bool:
        """Guarded no-op write: takes the writer lock and reports whether still open."""
        result = await self.session.execute(
            update(TripRequestModel)
            .where(
                TripRequestModel.id == request_id,
                TripRequestModel.status == TripRequestStatus.OPEN,
            )
            .values(status=TripRequestStatus.OPEN),
            execution_options=_NO_SYNC,
        )
        return result.rowcount == 1

    async def mark_matched(
        self, request_id: str, *, driver_id: str, trip_id: str, now: datetime
    ) -> bool:
        result = await self.session.execute(
            update(TripRequestModel)
            .where(
                TripRequestModel.id == request_id,
                TripRequestModel.status == TripRequestStatus.OPEN,
            )
            .values(
                status=TripRequestStatus.MATCHED,
                matched_driver_id=driver_id,
                matched_trip_id=trip_id,
                matched_at=now,
            ),
            execution_options=_NO_SYNC,
        )
        return result.rowcount == 1

    async def mark_expired(self, request_id: str, *, now: datetime) -> bool:
        result = await self.session.execute(
            update(TripRequestModel)
            .where(
                TripRequestModel.id == request_id,
                TripRequestModel.status == TripRequestStatus.OPEN,
            )
            .values(status=TripRequestStatus.EXPIRED, expired_at=now),
            execution_options=_NO_SYNC,
        )
        return result.rowcount == 1

    async def get_stale_open(self, cutoff: datetime, limit: int = 500) -> list[str]:
        """Open requests created before *cutoff* that no driver holds an offer for."""
        pending_offer = exists().where(
            DriverOfferModel.request_id == TripRequestModel.id,
            DriverOfferModel.status == OfferStatus.PENDING,
        )
        result = await self.session.execute(
            select(TripRequestModel.id)
            .where(
                TripRequestModel.status == TripRequestStatus.OPEN,
                TripRequestModel.created_at < cutoff,
                ~pending_offer,
            )
            .order_by(TripRequestModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())


class DriverOfferRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_many(self, offers: Iterable[DriverOfferModel]) -> None:
        self.session.add_all(list(offers))
        await self.session.flush()

    async def get(self, driver_id: str, request_id: str) -> Optional[DriverOfferModel]:
        result = await self.session.execute(
            select(DriverOfferModel).where(
                DriverOfferModel.driver_id == driver_id,
                DriverOfferModel.request_id == request_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, offer_id: str) -> Optional[DriverOfferModel]:
        return await self.session.get(DriverOfferModel, offer_id)

    async def driver_ids_for_request(self, request_id: str) -> set[str]:
        result = await self.session.execute(
            select(DriverOfferModel.driver_id).where(
                DriverOfferModel.request_id == request_id
            )
        )
        return set(result.scalars().all())

    async def list_for_request(self, request_id: str) -> list[DriverOfferModel]:
        result = await self.session.execute(
            select(DriverOfferModel)
            .where(DriverOfferModel.request_id == request_id)
            .order_by(DriverOfferModel.created_at)
        )
        return list(result.scalars().all())

    async def list_pending_for_driver(
        self, driver_id: str, now: datetime
    ) -> list[DriverOfferModel]:
        result = await self.session.execute(
            select(DriverOfferModel)
            .where(
                DriverOfferModel.driver_id == driver_id,
                DriverOfferModel.status == OfferStatus.PENDING,
                DriverOfferModel.expires_at >= now,
            )
            .order_by(DriverOfferModel.created_at)
        )
        return list(result.scalars().all())

    async def get_expired_pending(
        self, now: datetime, limit: int = 500
    ) -> list[DriverOfferModel]:
        """Range scan on the (status, expires_at) index."""
        result = await self.session.execute(
            select(DriverOfferModel)
            .where(
                DriverOfferModel.status == OfferStatus.PENDING,
                DriverOfferModel.expires_at < now,
            )
            .order_by(DriverOfferModel.expires_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def has_live_pending(
        self, request_id: str, now: datetime, *, exclude_offer_id: str | None = None
    ) -> bool:
        query = select(DriverOfferModel.id).where(
            DriverOfferModel.request_id == request_id,
            DriverOfferModel.status == OfferStatus.PENDING,
            DriverOfferModel.expires_at >= now,
        )
        if exclude_offer_id:
            query = query.where(DriverOfferModel.id != exclude_offer_id)
        result = await self.session.execute(query.limit(1))
        return result.first() is not None

    async def _set_pending_status(self, status: OfferStatus, now: datetime, *criteria) -> int:
        result = await self.session.execute(
            update(DriverOfferModel)
            .where(DriverOfferModel.status == OfferStatus.PENDING, *criteria)
            .values(status=status, responded_at=now),
            execution_options=_NO_SYNC,
        )
        return result.rowcount

    async def mark_expired(self, offer_id: str, *, now: datetime) -> bool:
        return (
            await self._set_pending_status(
                OfferStatus.EXPIRED, now, DriverOfferModel.id == offer_id
            )
            == 1
        )

    async def mark_accepted(
        self, *, driver_id: str, request_id: str, now: datetime
    ) -> bool:
        return (
            await self._set_pending_status(
                OfferStatus.ACCEPTED,
                now,
                DriverOfferModel.driver_id == driver_id,
                DriverOfferModel.request_id == request_id,
            )
            == 1
        )

    async def cancel_siblings(
        self, request_id: str, *, winner_driver_id: str, now: datetime
    ) -> int:
        """Retract every other driver's pending offer for a request just matched."""
        return await self._set_pending_status(
            OfferStatus.CANCELLED,
            now,
            DriverOfferModel.request_id == request_id,
            DriverOfferModel.driver_id != winner_driver_id,
        )

    async def cancel_for_trip(
        self, *, driver_id: str, trip_id: str, request_id: str, now: datetime
    ) -> int:
        return await self._set_pending_status(
            OfferStatus.CANCELLED,
            now,
            DriverOfferModel.driver_id == driver_id,
            or_(
                DriverOfferModel.trip_id == trip_id,
                DriverOfferModel.request_id == request_id,
            ),
        )


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, trip: TripModel) -> TripModel:
        self.session.add(trip)
        await self.session.flush()
        return trip

    async def get_by_id(self, trip_id: str) -> Optional[TripModel]:
        return await self.session.get(TripModel, trip_id, populate_existing=True)

    async def current_status(self, trip_id: str) -> Optional[TripStatus]:
        result = await self.session.execute(
            select(TripModel.status).where(TripModel.id == trip_id)
        )
        return result.scalar_one_or_none()

    async def transition(
        self,
        trip_id: str,
        *,
        expected: TripStatus,
        target: TripStatus,
        **values,
    ) -> bool:
        """CAS the trip from *expected* to *target*, writing *values* alongside."""
        result = await self.session.execute(
            update(TripModel)
            .where(TripModel.id == trip_id, TripModel.status == expected)
            .values(status=target, **values),
            execution_options=_NO_SYNC,
        )
        return result.rowcount == 1


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, driver_id: str) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id, populate_existing=True)

    async def create(self, driver: DriverModel) -> DriverModel:
        self.session.add(driver)
        await self.session.flush()
        return driver

    async def get_online_available(self, limit: int = 50) -> list[DriverModel]:
        result = await self.session.execute(
            select(DriverModel)
            .where(
                DriverModel.is_online.is_(True),
                DriverModel.is_available.is_(True),
            )
            .order_by(DriverModel.updated_at, DriverModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def set_online(self, driver_id: str, *, is_online: bool, now: datetime) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(is_online=is_online, updated_at=now),
            execution_options=_NO_SYNC,
        )

    async def occupy(self, driver_id: str, *, trip_id: str, now: datetime) -> bool:
        """Bind an available driver to *trip_id*.  False if already busy."""
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id, DriverModel.is_available.is_(True))
            .values(is_available=False, current_trip_id=trip_id, updated_at=now),
            execution_options=_NO_SYNC,
        )
        return result.rowcount == 1

    async def release(self, driver_id: str, *, trip_id: str, now: datetime) -> bool:
        """Free the driver only if still bound to *trip_id*; at most once per trip."""
        result = await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id, DriverModel.current_trip_id == trip_id)
            .values(is_available=True, current_trip_id=None, updated_at=now),
            execution_options=_NO_SYNC,
        )
        return result.rowcount == 1


class RatingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_trip(self, trip_id: str) -> Optional[RatingModel]:
        result = await self.session.execute(
            select(RatingModel).where(RatingModel.trip_id == trip_id)
        )
        return result.scalar_one_or_none()

    async def create(self, rating: RatingModel) -> RatingModel:
        self.session.add(rating)
        await self.session.flush()
        return rating


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: str) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def create(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        return user
