"""
Great-circle distance, the deterministic half of the distance oracle.

Used directly when no routing provider is configured and as the fallback
whenever the provider fails or times out.  Duration is derived from a
fixed assumed city speed.

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def duration_min_at_speed(distance_km: float, speed_kmh: float) -> float:
    """Minutes needed to cover *distance_km* at a constant *speed_kmh*."""
    return distance_km / max(speed_kmh, 1e-3) * 60.0
