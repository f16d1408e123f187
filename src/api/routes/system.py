"""GET /api/v1/ping -- unauthenticated liveness probe."""

from fastapi import APIRouter

from src.api.schemas import PingResponse

router = APIRouter(tags=["system"])


@router.get("/ping", response_model=PingResponse, summary="Liveness probe")
async def ping():
    return PingResponse()
