"""
Admin / observability endpoints
===============================

POST /api/v1/admin/trips/{trip_id}/force-cancel -- manager override on any active trip
GET  /api/v1/admin/health                       -- simple health check
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_caller, get_db
from src.api.middleware import limiter
from src.api.schemas import CancelRequest, CancelResponse, HealthResponse
from src.config import settings
from src.domain.entities import Caller
from src.services.cancellation import manager_force_cancel_trip

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/trips/{trip_id}/force-cancel",
    response_model=CancelResponse,
    summary="Force-cancel an active trip (manager/admin)",
)
@limiter.limit(settings.rate_limit)
async def force_cancel(
    request: Request,
    trip_id: str,
    body: Optional[CancelRequest] = None,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await manager_force_cancel_trip(
        db, caller, trip_id, body.reason if body else None
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse(environment=settings.environment)
