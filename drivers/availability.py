"""
Purpose: Keeps the driver's current-state projection up to date.
What it does:
Writes the latest availability status, position, battery and connectivity snapshot
in place on the driver record, so the candidate locator reads one row per driver
instead of scanning status history on the hot path.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Union

from dispatch.exceptions import DriverNotFoundError
from .models import (
    BatteryStatus,
    ConnectivityStatus,
    DriverAvailabilityStatus,
    DriverCandidate,
    DriverMatchingPreferences,
    LatLon,
)

logger = logging.getLogger(__name__)


def _get_driver(store, driver_id: str) -> DriverCandidate:
    driver = store.get_driver(driver_id)
    if driver is None:
        raise DriverNotFoundError(f"Driver {driver_id} not found")
    return driver


def update_driver_availability(
    store,
    driver_id: str,
    status: Union[str, DriverAvailabilityStatus],
    location: Optional[LatLon] = None,
    now: Optional[datetime] = None,
) -> DriverCandidate:
    """
    Ends the previous status, starts the new one, and sets is_available = (status == AVAILABLE).
    """
    if isinstance(status, str):
        status = DriverAvailabilityStatus(status.upper())
    now = now or datetime.now(timezone.utc)

    driver = _get_driver(store, driver_id)
    updated = replace(
        driver,
        availability_status=status,
        availability_since=now,
        is_available=status == DriverAvailabilityStatus.AVAILABLE,
        location=location if location is not None else driver.location,
    )
    store.save_driver(updated)
    logger.info(f"Driver {driver_id} is now {status.value}")
    return updated


def record_device_health(
    store,
    driver_id: str,
    battery: Optional[BatteryStatus] = None,
    connectivity: Optional[ConnectivityStatus] = None,
) -> DriverCandidate:
    """
    Replaces the current battery and/or connectivity snapshot.
    """
    driver = _get_driver(store, driver_id)
    updated = replace(
        driver,
        battery=battery if battery is not None else driver.battery,
        connectivity=connectivity if connectivity is not None else driver.connectivity,
    )
    store.save_driver(updated)
    return updated


def update_driver_preferences(
    store,
    driver_id: str,
    preferences: DriverMatchingPreferences,
) -> DriverCandidate:
    if preferences.max_distance_km is not None and preferences.max_distance_km <= 0:
        raise ValueError("max_distance_km must be > 0")
    if (
        preferences.min_order_value is not None
        and preferences.max_order_value is not None
        and preferences.min_order_value > preferences.max_order_value
    ):
        raise ValueError("min_order_value must be <= max_order_value")

    driver = _get_driver(store, driver_id)
    updated = replace(driver, preferences=preferences)
    store.save_driver(updated)
    return updated
