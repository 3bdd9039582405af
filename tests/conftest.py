from dataclasses import replace
from datetime import datetime, timezone

import pytest

from dispatch.dispatcher import Dispatcher
from dispatch.store import InMemoryMatchingStore
from drivers.models import DriverCandidate, ServiceType
from orders.models import Location, MatchingRequest, RequestType


class RecordingPushService:
    def __init__(self):
        self.offers = []
        self.revocations = []

    def broadcast_offer(self, driver_ids, request):
        self.offers.append((list(driver_ids), request.id))

    def revoke_offer(self, driver_ids, request_id):
        self.revocations.append((list(driver_ids), request_id))


@pytest.fixture
def now():
    # a Wednesday
    return datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryMatchingStore()


@pytest.fixture
def push_service():
    return RecordingPushService()


@pytest.fixture
def dispatcher(store, push_service):
    return Dispatcher(store, push_service=push_service)


@pytest.fixture
def make_driver():
    def _make(driver_id, lat=0.0, lon=0.01, **changes):
        driver = DriverCandidate.new(driver_id, lat, lon, rating=changes.pop("rating", 4.5))
        return replace(driver, **changes) if changes else driver
    return _make


@pytest.fixture
def make_request():
    def _make(request_id="order-1", lat=0.0, lon=0.0, request_type=RequestType.ORDER, **extra):
        is_ride = request_type == RequestType.RIDE
        extra.setdefault("service_type", ServiceType.RIDESHARE if is_ride else ServiceType.FOOD_DELIVERY)
        extra.setdefault("destination", Location(0.05, 0.05) if is_ride else None)
        return MatchingRequest(id=request_id, type=request_type, pickup=Location(lat, lon), **extra)
    return _make


@pytest.fixture
def add_drivers(store, make_driver):
    """
    Saves drivers at increasing distance east of (0, 0): 0.01, 0.02, ... degrees of longitude.
    """
    def _add(count, prefix="driver"):
        drivers = [make_driver(f"{prefix}_{i}", 0.0, 0.01 * (i + 1)) for i in range(count)]
        for driver in drivers:
            store.save_driver(driver)
        return drivers
    return _add
