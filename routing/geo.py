"""
Purpose: Great-circle geometry for driver/pickup proximity.
What it does:
Computes straight-line (haversine) distances in kilometers between (lat, lon) points.
No road network is consulted; the matching engine only needs a cheap, symmetric proximity measure.
"""

from __future__ import annotations

import math
from typing import Tuple

LatLon = Tuple[float, float]

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points, in kilometers.
    Symmetric, and exactly 0.0 for identical points.
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_between(origin: LatLon, destination: LatLon) -> float:
    """
    Convenience wrapper over haversine_km for (lat, lon) tuples.
    """
    return haversine_km(origin[0], origin[1], destination[0], destination[1])
