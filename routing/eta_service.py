#Purpose: ETA estimation policy.
#Converts a straight-line pickup distance into a minutes estimate used by:
#customer-facing "driver arrives in X"
#the matching engine's estimated wait time
#Heuristic only: average speed per vehicle class + a fixed buffer for traffic/parking.

from __future__ import annotations

import math
from typing import Dict

# Average speeds (km/h) by vehicle class
VEHICLE_SPEEDS_KMH: Dict[str, float] = {
    "BICYCLE": 15,
    "MOTORCYCLE": 35,
    "CAR": 30,
    "VAN": 25,
    "TRUCK": 20,
}
DEFAULT_SPEED_KMH = 30

ETA_BUFFER_MINUTES = 5
MIN_ETA_MINUTES = 5


def speed_for_vehicle(vehicle_type) -> float:
    """
    Looks up the average speed for a vehicle class. Unknown classes fall back to car speed.
    """
    if vehicle_type is None:
        return DEFAULT_SPEED_KMH
    key = getattr(vehicle_type, "value", vehicle_type)
    return VEHICLE_SPEEDS_KMH.get(str(key).upper(), DEFAULT_SPEED_KMH)


def estimate_eta(distance_km: float, vehicle_type=None) -> int:
    """
    Minutes until a driver reaches the pickup:
    travel time rounded up to the whole minute, plus the buffer, never below MIN_ETA_MINUTES.
    """
    travel_minutes = math.ceil(distance_km / speed_for_vehicle(vehicle_type) * 60)
    return max(MIN_ETA_MINUTES, travel_minutes + ETA_BUFFER_MINUTES)
