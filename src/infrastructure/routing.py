"""
Distance / duration oracle.

``MapboxRouteProvider`` calls the Mapbox Directions API with a bounded
timeout.  ``HaversineRouteProvider`` is the closed-form fallback: great
circle distance at a fixed assumed speed.  ``DistanceOracle`` glues the two
together and never raises: the provider reports transport failures and
malformed bodies as ``ExternalServiceError``, and that error or a missing
access token yields the fallback estimate instead.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Protocol

import httpx

from src.config import settings
from src.domain.distance import duration_min_at_speed, haversine_km
from src.domain.entities import Location, RouteEstimate
from src.domain.errors import ExternalServiceError

logger = logging.getLogger(__name__)

PLACEHOLDER_TOKENS = {"", "your-mapbox-token-here"}


class RouteProvider(Protocol):
    async def route(self, pickup: Location, dropoff: Location) -> RouteEstimate: ...


class HaversineRouteProvider:
    def __init__(self, speed_kmh: float = 30.0):
        self.speed_kmh = speed_kmh

    async def route(self, pickup: Location, dropoff: Location) -> RouteEstimate:
        distance = haversine_km(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)
        return RouteEstimate(
            distance_km=distance,
            duration_min=duration_min_at_speed(distance, self.speed_kmh),
            source="haversine",
        )


class MapboxRouteProvider:
    """Driving route via the Mapbox Directions API."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.mapbox.com",
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def route(self, pickup: Location, dropoff: Location) -> RouteEstimate:
        coordinates = f"{pickup.lng},{pickup.lat};{dropoff.lng},{dropoff.lat}"
        url = f"{self.base_url}/directions/v5/mapbox/driving/{coordinates}"
        params = {"access_token": self.access_token, "geometries": "geojson"}

        try:
            if self._client is not None:
                resp = await self._client.get(url, params=params, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    resp = await client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise ExternalServiceError(
                f"request timed out after {self.timeout_seconds:g} seconds", "mapbox"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"request failed: {exc}", "mapbox") from exc

        if resp.status_code >= 400:
            raise ExternalServiceError(f"API error: {resp.status_code}", "mapbox")

        try:
            body = resp.json() or {}
        except ValueError as exc:
            raise ExternalServiceError("malformed response body", "mapbox") from exc

        if not isinstance(body, dict):
            raise ExternalServiceError("malformed response body", "mapbox")
        routes = body.get("routes") or []
        if body.get("code") != "Ok" or not isinstance(routes, list) or not routes:
            raise ExternalServiceError(f"no routes returned: {body.get('code')}", "mapbox")

        try:
            first = routes[0] or {}
            distance_m = float(first.get("distance") or 0.0)
            duration_s = float(first.get("duration") or 0.0)
        except (TypeError, ValueError, AttributeError) as exc:
            raise ExternalServiceError("malformed route", "mapbox") from exc
        if not (math.isfinite(distance_m) and math.isfinite(duration_s)):
            raise ExternalServiceError("malformed route", "mapbox")
        if distance_m < 0 or duration_s < 0:
            raise ExternalServiceError("malformed route", "mapbox")
        logger.info(
            "Route calculated via Mapbox",
            extra={"distance_m": distance_m, "duration_s": duration_s},
        )
        return RouteEstimate(
            distance_km=distance_m / 1000.0,
            duration_min=duration_s / 60.0,
            source="mapbox",
        )


class DistanceOracle:
    """Primary provider with a deterministic fallback.  Never raises."""

    def __init__(
        self,
        primary: Optional[RouteProvider],
        fallback: RouteProvider,
    ):
        self.primary = primary
        self.fallback = fallback

    async def estimate(self, pickup: Location, dropoff: Location) -> RouteEstimate:
        if self.primary is None:
            logger.debug("No routing provider configured, using fallback estimate")
            return await self.fallback.route(pickup, dropoff)
        try:
            return await self.primary.route(pickup, dropoff)
        except ExternalServiceError as exc:
            logger.warning("Routing provider failed, using fallback estimate: %s", exc)
            return await self.fallback.route(pickup, dropoff)


def build_oracle(client: Optional[httpx.AsyncClient] = None) -> DistanceOracle:
    """Oracle wired from settings; Mapbox only when a real token is set."""
    fallback = HaversineRouteProvider(settings.fallback_speed_kmh)
    token = (settings.mapbox_access_token or "").strip()
    primary = None
    if token not in PLACEHOLDER_TOKENS:
        primary = MapboxRouteProvider(
            token,
            base_url=settings.mapbox_base_url,
            timeout_seconds=settings.routing_timeout_seconds,
            client=client,
        )
    return DistanceOracle(primary, fallback)
