"""
Caller identity.

Tokens are issued elsewhere; this service only verifies HS256 bearer tokens
whose ``sub`` is the user id.  A development provider that trusts an
``X-Dev-User-Id`` header can be switched on with ``DEV_AUTH_ENABLED``, and is
refused outright when ``ENVIRONMENT=prod``.  The identity is never taken from
a request body.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Optional, Protocol

import jwt
from fastapi import Request

from src.config import Settings, settings
from src.domain.errors import UnauthorizedError

logger = logging.getLogger(__name__)

DEV_USER_HEADER = "X-Dev-User-Id"


class IdentityProvider(Protocol):
    def identify(self, request: Request, token: Optional[str]) -> str: ...


class JWTIdentityProvider:
    def __init__(self, secret: str, algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def identify(self, request: Request, token: Optional[str]) -> str:
        if not token:
            raise UnauthorizedError()
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise UnauthorizedError("Token expired")
        except jwt.InvalidTokenError:
            raise UnauthorizedError("Invalid token")
        user_id = payload.get("sub")
        if not user_id:
            raise UnauthorizedError("Invalid token payload")
        return str(user_id)


class DevIdentityProvider:
    """Trusts ``X-Dev-User-Id``; falls through to bearer tokens otherwise."""

    def __init__(self, fallback: JWTIdentityProvider):
        self.fallback = fallback

    def identify(self, request: Request, token: Optional[str]) -> str:
        user_id = (request.headers.get(DEV_USER_HEADER) or "").strip()
        if user_id:
            return user_id
        return self.fallback.identify(request, token)


def build_identity_provider(config: Settings = settings) -> IdentityProvider:
    jwt_provider = JWTIdentityProvider(config.jwt_secret, config.jwt_algorithm)
    if not config.dev_auth_enabled:
        return jwt_provider
    if config.environment == "prod":
        raise RuntimeError("Dev authentication cannot be enabled in production")
    logger.warning("Dev authentication enabled: %s header is trusted", DEV_USER_HEADER)
    return DevIdentityProvider(jwt_provider)


def create_access_token(
    user_id: str, expires_minutes: int = 60, config: Settings = settings
) -> str:
    """Mint a token the way the identity service does.  Used by seed data and tests."""
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + dt.timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)
