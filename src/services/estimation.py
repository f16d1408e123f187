"""
Trip estimation: route oracle + fare.

Read-only and transaction-free.  It runs before any mutating operation, so
no database transaction is ever held open across the routing call.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from src.config import settings
from src.domain.entities import Location
from src.domain.errors import ValidationError
from src.domain.pricing import PricingEngine
from src.infrastructure.routing import DistanceOracle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TripEstimate:
    distance_km: float
    duration_min: float
    price_ils: int


def pricing_engine() -> PricingEngine:
    return PricingEngine(settings.km_per_ils, settings.min_fare_ils)


async def estimate_trip(
    oracle: DistanceOracle, pickup: Location, dropoff: Location
) -> TripEstimate:
    route = await oracle.estimate(pickup, dropoff)
    # Price from the quoted (rounded) distance so a client can echo it back
    distance_km = round(route.distance_km, 2)
    estimate = TripEstimate(
        distance_km=distance_km,
        duration_min=round(route.duration_min, 1),
        price_ils=pricing_engine().calculate_price(distance_km),
    )
    logger.info(
        "Trip estimated: %.2f km, %.1f min, %d ILS (%s)",
        estimate.distance_km,
        estimate.duration_min,
        estimate.price_ils,
        route.source,
    )
    return estimate


def check_client_estimate(estimate: TripEstimate) -> None:
    """A client-supplied estimate must carry the fare its distance implies."""
    if not (math.isfinite(estimate.distance_km) and math.isfinite(estimate.duration_min)):
        raise ValidationError("Estimate distance and duration must be finite numbers")
    if estimate.distance_km < 0 or estimate.duration_min < 0:
        raise ValidationError("Estimate distance and duration must be non-negative")
    expected = pricing_engine().calculate_price(estimate.distance_km)
    if estimate.price_ils != expected:
        raise ValidationError(
            f"Estimated price {estimate.price_ils} does not match the fare for "
            f"{estimate.distance_km} km ({expected})",
            details={"priceIls": estimate.price_ils, "expectedPriceIls": expected},
        )
