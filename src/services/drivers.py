"""Driver presence toggle and inbox reads."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import Caller
from src.domain.enums import UserRole
from src.domain.errors import ForbiddenError
from src.infrastructure.database import unit_of_work
from src.infrastructure.models import (
    DriverModel,
    DriverOfferModel,
    UserModel,
    utcnow,
)
from src.infrastructure.repositories import (
    DriverOfferRepository,
    DriverRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


async def set_driver_status(
    session: AsyncSession,
    caller: Caller,
    is_online: bool,
    name: Optional[str] = None,
) -> DriverModel:
    """Flip the caller's online flag.  Availability is left alone."""
    async with unit_of_work(session):
        users = UserRepository(session)
        drivers = DriverRepository(session)
        now = utcnow()

        user = await users.get_by_id(caller.user_id)
        if user is None:
            await users.create(
                UserModel(
                    id=caller.user_id,
                    name=name or caller.user_id,
                    role=UserRole.DRIVER,
                    created_at=now,
                )
            )
        elif user.role != UserRole.DRIVER:
            raise ForbiddenError("Only drivers can change driver status")

        driver = await drivers.get_by_id(caller.user_id)
        if driver is None:
            driver = await drivers.create(
                DriverModel(
                    id=caller.user_id,
                    is_online=is_online,
                    is_available=True,
                    updated_at=now,
                )
            )
            logger.info("Driver record created for %s", caller.user_id)
        else:
            await drivers.set_online(caller.user_id, is_online=is_online, now=now)
            driver = await drivers.get_by_id(caller.user_id)

    logger.info(
        "Driver %s is now %s", caller.user_id, "online" if is_online else "offline"
    )
    return driver


async def list_driver_offers(
    session: AsyncSession, caller: Caller
) -> list[DriverOfferModel]:
    return await DriverOfferRepository(session).list_pending_for_driver(
        caller.user_id, utcnow()
    )
