"""
Distance calculation using the Haversine formula.

Assumption
----------
Great-circle distance on a sphere of radius 6371 km.  It is the single
authority for "is this point inside the search radius"; store-side
spatial predicates only narrow the candidate set.

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
    a = min(a, 1.0)  # float noise near antipodes
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def round_km(distance_km: float) -> float:
    """Display rounding: one decimal place."""
    return round(distance_km, 1)
