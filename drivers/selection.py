"""
Purpose: Hard eligibility rules for choosing which drivers may be offered a request.
What it does:
Accepts a MatchingRequest and a pool of drivers, and drops every driver that is
categorically ineligible. Filters never influence the score: a driver either passes
all of them or does not appear at all. Ranking happens later in dispatch.scoring.

Filters, in order:
1. available flag, VERIFIED, rating >= effective minimum
2. service type compatibility (or BOTH), vehicle type when the request requires one
3. known current position
4. current availability status is AVAILABLE
5. distance to pickup <= effective max distance
6. battery not critical
7. device connected
8. estimated value within the driver's own min/max order value
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from routing.geo import distance_between
from .models import DriverAvailabilityStatus, DriverCandidate, ServiceType, VerificationStatus
from .policy import MatchingAlgorithmConfig

logger = logging.getLogger(__name__)


def effective_min_rating(request, config: MatchingAlgorithmConfig) -> float:
    override = request.requirements.min_rating
    return override if override is not None else config.min_rating


def effective_max_distance(request, driver: DriverCandidate, config: MatchingAlgorithmConfig) -> float:
    """
    Request override, else config default; a driver's own preference only ever tightens it.
    """
    override = request.requirements.max_distance
    max_distance = override if override is not None else config.max_distance

    preferences = driver.preferences
    if preferences and preferences.max_distance_km is not None:
        max_distance = min(max_distance, preferences.max_distance_km)
    return max_distance


def _supports_service(driver: DriverCandidate, service_type: ServiceType) -> bool:
    return service_type in driver.service_types or ServiceType.BOTH in driver.service_types


def _within_value_bounds(driver: DriverCandidate, estimated_value: Optional[float]) -> bool:
    preferences = driver.preferences
    if not preferences or estimated_value is None:
        return True
    if preferences.max_order_value is not None and estimated_value > preferences.max_order_value:
        return False
    if preferences.min_order_value is not None and estimated_value < preferences.min_order_value:
        return False
    return True


def is_eligible(driver: DriverCandidate, request, config: MatchingAlgorithmConfig) -> bool:
    if not driver.is_available:
        return False
    if driver.verification_status != VerificationStatus.VERIFIED:
        return False
    if driver.rating < effective_min_rating(request, config):
        return False

    if not _supports_service(driver, request.service_type):
        return False
    required_vehicle = request.requirements.vehicle_type
    if required_vehicle is not None and driver.vehicle_type != required_vehicle:
        return False

    if driver.location is None or None in driver.location:
        return False

    if driver.availability_status != DriverAvailabilityStatus.AVAILABLE:
        return False

    distance = distance_between(request.pickup.coordinates, driver.location)
    if distance > effective_max_distance(request, driver, config):
        return False

    if driver.battery is not None and driver.battery.critical_battery:
        return False
    if driver.connectivity is not None and not driver.connectivity.is_connected:
        return False

    return _within_value_bounds(driver, request.estimated_value)


def filter_eligible_drivers(
    request,
    drivers: Sequence[DriverCandidate],
    config: MatchingAlgorithmConfig,
) -> List[DriverCandidate]:
    """
    Returns only drivers that pass every hard filter, in their input order.
    """
    return [driver for driver in drivers if is_eligible(driver, request, config)]


def locate_candidates(store, request, config: MatchingAlgorithmConfig) -> List[DriverCandidate]:
    """
    Queries the driver pool and applies the hard filters.
    An empty list is a normal outcome, not an error.
    """
    pool = store.list_available_drivers()
    eligible = filter_eligible_drivers(request, pool, config)
    logger.debug(f"Request {request.id}: {len(eligible)}/{len(pool)} drivers eligible")
    return eligible
