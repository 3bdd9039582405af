from datetime import timedelta

import pytest

from dispatch.exceptions import DriverNotFoundError, MatchingError
from drivers.availability import (
    record_device_health,
    update_driver_availability,
    update_driver_preferences,
)
from drivers.models import (
    BatteryStatus,
    ConnectionType,
    ConnectivityStatus,
    DriverAvailabilityStatus,
    DriverMatchingPreferences,
)


@pytest.fixture
def driver(store, make_driver):
    driver = make_driver("d1")
    store.save_driver(driver)
    return driver


def test_going_on_break_leaves_the_pool(store, driver, now):
    updated = update_driver_availability(store, "d1", "break", now=now)

    assert updated.availability_status == DriverAvailabilityStatus.BREAK
    assert not updated.is_available
    assert updated.availability_since == now
    assert store.list_available_drivers() == []


def test_coming_back_with_a_new_position(store, driver, now):
    update_driver_availability(store, "d1", DriverAvailabilityStatus.OFFLINE, now=now)

    updated = update_driver_availability(
        store, "d1", DriverAvailabilityStatus.AVAILABLE, location=(-17.82, 31.05), now=now + timedelta(hours=1)
    )

    assert updated.is_available
    assert store.get_driver("d1").location == (-17.82, 31.05)
    assert [d.id for d in store.list_available_drivers()] == ["d1"]


def test_unknown_driver(store):
    with pytest.raises(DriverNotFoundError) as excinfo:
        update_driver_availability(store, "ghost", "AVAILABLE")

    assert isinstance(excinfo.value, MatchingError)


def test_device_health_replaces_only_what_was_reported(store, driver, now):
    battery = BatteryStatus(battery_level=42, is_charging=True, reported_at=now)
    record_device_health(store, "d1", battery=battery)

    connectivity = ConnectivityStatus(signal_strength=90, connection_type=ConnectionType.WIFI, reported_at=now)
    updated = record_device_health(store, "d1", connectivity=connectivity)

    assert updated.battery == battery
    assert updated.connectivity == connectivity
    assert store.get_driver("d1").battery == battery


def test_preferences_are_validated(store, driver):
    with pytest.raises(ValueError):
        update_driver_preferences(store, "d1", DriverMatchingPreferences(max_distance_km=0))
    with pytest.raises(ValueError):
        update_driver_preferences(store, "d1", DriverMatchingPreferences(min_order_value=50, max_order_value=10))

    updated = update_driver_preferences(store, "d1", DriverMatchingPreferences(max_distance_km=5))
    assert store.get_driver("d1").preferences == updated.preferences
