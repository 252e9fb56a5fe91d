"""
Distance and ETA estimates using the Haversine formula.

Great-circle distance stands in for road distance; it drives the driver
job-feed radius filter and the customer-facing ETA.

Complexity: O(1) per call.
"""

import math

EARTH_RADIUS_KM = 6_371.0
AVERAGE_SPEED_KMH = 30.0


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


def estimate_eta_minutes(distance_km: float, average_kmh: float = AVERAGE_SPEED_KMH) -> int:
    """Whole minutes to cover *distance_km*, rounded up; 0 for no distance."""
    if distance_km <= 0:
        return 0
    return math.ceil(distance_km / average_kmh * 60)

