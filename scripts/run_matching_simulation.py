import argparse
import logging
import os
import random
from datetime import datetime, timedelta, timezone
from typing import List

import pandas as pd

from dispatch.dispatcher import ACCEPTED, REJECTED, Dispatcher
from dispatch.exceptions import AssignmentConflictError
from dispatch.settings import EngineSettings
from dispatch.store import InMemoryMatchingStore
from drivers.models import BatteryStatus, ConnectivityStatus, ConnectionType, DriverCandidate, ServiceType
from drivers.performance import PerformanceAggregator
from drivers.policy import MatchingAlgorithmConfig
from orders.models import Location, MatchingRequest, RequestType
from orders.queue import ReassignmentManager

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class MockPushService:
    def __init__(self):
        self.offers = 0
        self.revocations = 0

    def broadcast_offer(self, driver_ids, request):
        self.offers += len(driver_ids)

    def revoke_offer(self, driver_ids, request_id):
        self.revocations += len(driver_ids)


def load_drivers(filepath) -> List[DriverCandidate]:
    df = pd.read_csv(filepath)
    now = datetime.now(timezone.utc)
    drivers = []
    for row in df.itertuples(index=False):
        battery_level = float(row.battery_level)
        drivers.append(
            DriverCandidate.new(
                row.driver_id,
                float(row.lat),
                float(row.lon),
                vehicle_type=row.vehicle_type,
                rating=float(row.rating),
                status=row.status,
                verified=bool(row.verified),
                service_types=(row.service_type,),
                battery=BatteryStatus(
                    battery_level=battery_level,
                    low_battery=battery_level < 20,
                    critical_battery=battery_level < 5,
                    is_charging=bool(row.is_charging),
                    reported_at=now,
                ),
                connectivity=ConnectivityStatus(
                    is_connected=True,
                    signal_strength=int(row.signal_strength),
                    connection_type=ConnectionType(row.connection_type),
                    reported_at=now,
                ),
            )
        )
    return drivers


def load_requests(filepath, limit=50) -> List[MatchingRequest]:
    df = pd.read_csv(filepath).head(limit)
    requests = []
    for row in df.itertuples(index=False):
        requests.append(
            MatchingRequest(
                id=row.request_id,
                type=RequestType(row.request_type),
                service_type=ServiceType(row.service_type),
                pickup=Location(float(row.pickup_lat), float(row.pickup_lon), row.pickup_address),
                destination=Location(float(row.dropoff_lat), float(row.dropoff_lon)),
                estimated_value=float(row.estimated_value),
                priority=int(row.priority),
            )
        )
    return requests


def run_simulation(drivers_csv, requests_csv, limit=50, accept_probability=0.6, cycles=3):
    print("=== STARTING MATCHING SIMULATION ===")

    store = InMemoryMatchingStore()
    for driver in load_drivers(drivers_csv):
        store.save_driver(driver)
    requests = load_requests(requests_csv, limit=limit)
    print(f"Loaded {len(requests)} requests and {len(store.list_available_drivers())} available drivers.\n")

    push_service = MockPushService()
    dispatcher = Dispatcher(store, settings=EngineSettings.from_env(), push_service=push_service)
    dispatcher.config_provider.save_config(
        MatchingAlgorithmConfig(name="Simulation", reassignment_delay=0), activate=True
    )
    reassignment = ReassignmentManager(store, dispatcher)

    clock = datetime.now(timezone.utc)
    for request in requests:
        outcome = dispatcher.dispatch_request(request, now=clock)
        if not outcome.assignments:
            print(f"[QUEUED] {request.type.value} {request.id}: {outcome.result.error}")
            continue

        # Every offered driver answers; the first accept wins, the rest conflict
        for assignment in random.sample(outcome.assignments, len(outcome.assignments)):
            response = ACCEPTED if random.random() < accept_probability else REJECTED
            try:
                dispatcher.handle_driver_response(
                    assignment.id, assignment.driver_id, response,
                    rejection_reason="Too far" if response == REJECTED else None,
                    now=clock + timedelta(seconds=random.randint(3, 45)),
                )
            except AssignmentConflictError:
                continue

    for cycle in range(cycles):
        clock += timedelta(minutes=1)
        processed = reassignment.run_cycle(now=clock)
        print(f"Reassignment cycle {cycle + 1}: {len(processed)} items processed")

    dispatcher.expire_overdue_assignments(now=clock + timedelta(minutes=5))
    PerformanceAggregator(store).update_all([d.id for d in store.list_available_drivers()], now=clock)

    records = [store.get_request(r.id) for r in requests]
    assigned = sum(1 for record in records if record is not None and record.driver_id)
    print("\n=== SIMULATION COMPLETE ===")
    print(f"Requests assigned: {assigned} / {len(requests)}")
    print(f"Offers pushed: {push_service.offers}, revoked: {push_service.revocations}")
    print(f"Reassignment queue: {reassignment.queue_summary()}")
    stats = dispatcher.get_matching_statistics(clock - timedelta(hours=1), clock + timedelta(hours=1))
    print(f"Offer success rate: {stats.success_rate:.1f}%, avg response: {stats.avg_response_time:.1f}s")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Replay mock requests against a mock driver pool.")
    parser.add_argument("--drivers", default=os.path.join(BASE_DIR, "mock_drivers.csv"))
    parser.add_argument("--requests", default=os.path.join(BASE_DIR, "mock_requests.csv"))
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--accept-probability", type=float, default=0.6)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_simulation(args.drivers, args.requests, limit=args.limit, accept_probability=args.accept_probability)
