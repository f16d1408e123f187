"""
Fare Pricing  (Strategy Pattern)
================================

Formula
-------
Price = max(ceil(Distance / KM_PER_ILS), MIN_FARE)

* Every 2 km costs 1 ILS, rounded up.
* A 5 ILS minimum fare applies to short trips.

Cash only in v1: the price is informational and is copied to the trip as
its final price on completion.  Pure, no failure path.

Complexity: O(1) per price calculation.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

KM_PER_ILS = 2.0
MIN_FARE_ILS = 5


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(self, distance_km: float) -> int: ...


class DistanceBandPricing(PricingStrategy):
    """One currency unit per started band of ``km_per_unit`` kilometres."""

    def __init__(self, km_per_unit: float = KM_PER_ILS):
        self.km_per_unit = km_per_unit

    def calculate(self, distance_km: float) -> int:
        return math.ceil(max(distance_km, 0.0) / self.km_per_unit)


class MinimumFarePricing(PricingStrategy):
    """Wraps another strategy and never quotes below ``min_fare``."""

    def __init__(self, inner: PricingStrategy, min_fare: int = MIN_FARE_ILS):
        self.inner = inner
        self.min_fare = min_fare

    def calculate(self, distance_km: float) -> int:
        return max(self.inner.calculate(distance_km), self.min_fare)


# ── Engine facade ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PriceBreakdown:
    distance_km: float
    price_per_km: float
    calculated_price: int
    minimum_fare: int
    final_price: int


class PricingEngine:
    """High-level API used by the estimation service."""

    def __init__(self, km_per_ils: float = KM_PER_ILS, min_fare: int = MIN_FARE_ILS):
        self.km_per_ils = km_per_ils
        self.min_fare = min_fare
        self._band = DistanceBandPricing(km_per_ils)
        self._strategy = MinimumFarePricing(self._band, min_fare)

    def calculate_price(self, distance_km: float) -> int:
        return self._strategy.calculate(distance_km)

    def breakdown(self, distance_km: float) -> PriceBreakdown:
        calculated = self._band.calculate(distance_km)
        return PriceBreakdown(
            distance_km=distance_km,
            price_per_km=1 / self.km_per_ils,
            calculated_price=calculated,
            minimum_fare=self.min_fare,
            final_price=max(calculated, self.min_fare),
        )


def calculate_price(distance_km: float) -> int:
    """Fare in ILS for *distance_km* under the default tariff."""
    return PricingEngine().calculate_price(distance_km)
