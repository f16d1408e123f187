"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.entities import Caller
from src.infrastructure.database import async_session_factory
from src.infrastructure.repositories import UserRepository
from src.infrastructure.routing import DistanceOracle

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_caller(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Caller:
    """Resolve the authenticated user; the role comes from the users table."""
    provider = request.app.state.identity_provider
    user_id = provider.identify(request, creds.credentials if creds else None)
    user = await UserRepository(db).get_by_id(user_id)
    return Caller(user_id=user_id, role=user.role if user else None)


def get_oracle(request: Request) -> DistanceOracle:
    return request.app.state.oracle
