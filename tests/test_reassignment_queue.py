from dataclasses import replace
from datetime import timedelta

import pytest

from dispatch.models import AssignmentStatus
from dispatch.state_machines.queue_state import QueueStateException, claim_item, retry_item
from orders.models import QueueItemStatus, ReassignmentQueueItem, RequestStatus, RequestType
from orders.queue import ReassignmentManager, build_request, escalated_radius_km


@pytest.fixture
def manager(store, dispatcher):
    return ReassignmentManager(store, dispatcher)


@pytest.fixture
def queued(dispatcher, store, make_request, now):
    """order-1 parked in the queue because nobody was available."""
    outcome = dispatcher.dispatch_request(make_request("order-1"), now=now)
    assert outcome.queued_for_reassignment
    [item] = store.list_reassignments_for_request("order-1")
    return item


def test_escalation_radius():
    assert escalated_radius_km(1) is None
    assert escalated_radius_km(2) == 30
    assert escalated_radius_km(3) == 35


def test_build_request_widens_radius_after_first_attempt(store, queued):
    record = store.get_request("order-1")

    first = build_request(record, queued)
    second = build_request(record, replace(queued, attempt=2))

    assert first.requirements.max_distance is None
    assert second.requirements.max_distance == 30
    assert second.pickup == record.pickup


def test_item_waits_for_the_reassignment_delay(manager, store, add_drivers, queued, now):
    add_drivers(2)

    assert manager.run_cycle(now=now + timedelta(seconds=10)) == []

    [processed] = manager.run_cycle(now=now + timedelta(seconds=31))
    assert processed.status == QueueItemStatus.COMPLETED
    assert len(processed.assignment_ids) == 2
    assert {a.status for a in store.list_assignments_for_request("order-1")} == {AssignmentStatus.PENDING}


def test_escalated_radius_reaches_a_far_driver(manager, store, make_driver, queued, now):
    # ~25 km east: outside the default 15 km, inside the 30 km of attempt 2
    store.save_driver(make_driver("far", 0.0, 0.225))

    [first] = manager.run_cycle(now=now + timedelta(seconds=31))
    assert first.status == QueueItemStatus.PENDING
    assert first.attempt == 2
    assert first.processed_at is None

    [second] = manager.run_cycle(now=now + timedelta(seconds=62))
    assert second.status == QueueItemStatus.COMPLETED
    [offer] = store.list_assignments_for_request("order-1")
    assert offer.driver_id == "far"


def test_exhausted_attempts_fail_the_request(manager, store, queued, now):
    results = [manager.run_cycle(now=now + timedelta(seconds=31 * n)) for n in (1, 2, 3)]

    assert [r[0].status for r in results] == [
        QueueItemStatus.PENDING, QueueItemStatus.PENDING, QueueItemStatus.FAILED,
    ]
    assert store.get_reassignment_item(queued.id).attempt == 3
    assert store.get_request("order-1").status == RequestStatus.UNMATCHED
    assert manager.run_cycle(now=now + timedelta(hours=1)) == []


def test_cancelled_request_cancels_the_item(manager, store, add_drivers, queued, now):
    add_drivers(1)
    store.set_request_status("order-1", RequestStatus.CANCELLED)

    [processed] = manager.run_cycle(now=now + timedelta(seconds=31))

    assert processed.status == QueueItemStatus.CANCELLED
    assert store.list_assignments_for_request("order-1") == []


def test_due_items_are_ordered_by_priority_then_age(store, now):
    for request_id, priority, age in [("low", 0, 50), ("high_new", 5, 10), ("high_old", 5, 40), ("mid", 2, 30)]:
        store.enqueue_reassignment(ReassignmentQueueItem(
            request_id=request_id,
            request_type=RequestType.ORDER,
            priority=priority,
            created_at=now - timedelta(seconds=age),
            available_at=now - timedelta(seconds=age),
        ))

    due = store.list_due_reassignments(now, limit=3)

    assert [item.request_id for item in due] == ["high_old", "high_new", "mid"]


def test_batch_size_bounds_a_sweep(store, dispatcher, make_request, now):
    for i in range(3):
        dispatcher.dispatch_request(make_request(f"order-{i}"), now=now)
    manager = ReassignmentManager(store, dispatcher, batch_size=2)

    assert len(manager.run_cycle(now=now + timedelta(seconds=31))) == 2
    assert manager.queue_summary()["pending"] == 3


def test_an_item_is_claimed_only_once(store, queued, now):
    claimed = claim_item(queued, now)

    assert store.compare_and_set_queue_item(claimed, expected=QueueItemStatus.PENDING)
    assert not store.compare_and_set_queue_item(claimed, expected=QueueItemStatus.PENDING)
    with pytest.raises(QueueStateException):
        claim_item(claimed, now)
    with pytest.raises(QueueStateException):
        retry_item(queued, now, 30)


def test_queue_summary_counts_every_status(manager, store, queued):
    summary = manager.queue_summary()

    assert summary == {
        "pending": 1, "processing": 0, "completed": 0, "failed": 0, "cancelled": 0,
    }


def test_item_is_dropped_while_offers_are_pending(manager, dispatcher, store, add_drivers, make_request, queued, now):
    add_drivers(3)
    request = make_request("order-1")
    result = dispatcher.engine.find_matches(request)
    dispatcher.create_assignments(request, result.matches, now=now + timedelta(seconds=5))

    [processed] = manager.run_cycle(now=now + timedelta(seconds=31))

    assert processed.status == QueueItemStatus.CANCELLED
    offers = store.list_assignments_for_request("order-1", AssignmentStatus.PENDING)
    assert sorted(a.driver_id for a in offers) == ["driver_0", "driver_1", "driver_2"]


def test_redispatch_leaves_a_single_offer_round(manager, dispatcher, store, add_drivers, make_request, queued, now):
    add_drivers(3)
    dispatcher.dispatch_request(make_request("order-1"), now=now + timedelta(seconds=5))

    assert manager.run_cycle(now=now + timedelta(seconds=40)) == []
    offers = store.list_assignments_for_request("order-1", AssignmentStatus.PENDING)
    assert sorted(a.driver_id for a in offers) == ["driver_0", "driver_1", "driver_2"]
