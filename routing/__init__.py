#Marks routing as a package.
#Re-exports the geometry + ETA helpers so other modules import from routing
#without knowing internal file names.
#No business logic.

from .geo import EARTH_RADIUS_KM, LatLon, distance_between, haversine_km
from .eta_service import VEHICLE_SPEEDS_KMH, estimate_eta, speed_for_vehicle

__all__ = [
    "EARTH_RADIUS_KM",
    "LatLon",
    "distance_between",
    "haversine_km",
    "VEHICLE_SPEEDS_KMH",
    "estimate_eta",
    "speed_for_vehicle",
]
