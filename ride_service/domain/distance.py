"""
Great-circle distance between two ``Location`` points.

Straight-line (Haversine) distance stands in for a routing engine; fares
are estimates and are fixed at request time.
"""

import math

from .entities import Location

EARTH_RADIUS_KM = 6_371.0


def haversine_km(origin: Location, destination: Location) -> float:
    """Return the great-circle distance in **km** between two locations."""
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(destination.latitude)
    dlat = lat2 - lat1
    dlng = math.radians(destination.longitude - origin.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))
