"""
Driver endpoints
================

PATCH /api/v1/drivers/me/status  -- go online / offline
GET   /api/v1/drivers/me/offers  -- pending, unexpired offers (the driver inbox)
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_caller, get_db
from src.api.middleware import limiter
from src.api.schemas import DriverOfferResponse, DriverStatusResponse, DriverStatusUpdate
from src.config import settings
from src.domain.entities import Caller
from src.services.drivers import list_driver_offers, set_driver_status

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.patch(
    "/me/status", response_model=DriverStatusResponse, summary="Set online status"
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    body: DriverStatusUpdate,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    driver = await set_driver_status(db, caller, body.is_online, name=body.name)
    return DriverStatusResponse(
        driver_id=driver.id,
        is_online=driver.is_online,
        is_available=driver.is_available,
        current_trip_id=driver.current_trip_id,
    )


@router.get(
    "/me/offers",
    response_model=list[DriverOfferResponse],
    summary="List the caller's pending offers",
)
@limiter.limit(settings.rate_limit)
async def get_offers(
    request: Request,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await list_driver_offers(db, caller)
