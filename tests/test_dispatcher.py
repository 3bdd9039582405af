from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from threading import Barrier

import pytest

from dispatch.dispatcher import ACCEPTED, REJECTED
from dispatch.exceptions import (
    AssignmentConflictError,
    AssignmentNotFoundError,
    AuthorizationError,
    InvalidResponseError,
)
from dispatch.models import AssignmentStatus, HistoryStatus
from orders.models import QueueItemStatus, RequestRecord, RequestStatus, RequestType


@pytest.fixture
def offers(dispatcher, add_drivers, make_request, now):
    """Three PENDING offers for order-1, best ranked first."""
    add_drivers(3)
    outcome = dispatcher.dispatch_request(make_request("order-1"), now=now)
    return outcome.assignments


def _statuses(store, request_id):
    return {a.driver_id: a.status for a in store.list_assignments_for_request(request_id)}


def test_offers_are_created_with_descending_priority(offers, store, push_service, now):
    assert [a.driver_id for a in offers] == ["driver_0", "driver_1", "driver_2"]
    assert [a.priority for a in offers] == [10, 9, 8]
    assert all(a.status == AssignmentStatus.PENDING for a in offers)
    assert all(a.response_timeout == now + timedelta(seconds=60) for a in offers)
    assert push_service.offers == [(["driver_0", "driver_1", "driver_2"], "order-1")]

    history = store.get_history(offers[0].id)
    assert history.status == HistoryStatus.PENDING
    assert history.matching_score == pytest.approx(offers[0].total_score)
    assert set(history.factors) == {
        "distanceScore", "ratingScore", "completionRateScore", "responseTimeScore", "availabilityScore",
    }
    assert store.get_request("order-1").status == RequestStatus.SEARCHING


def test_accept_binds_driver_and_cancels_siblings(offers, dispatcher, store, push_service, now):
    winner = offers[1]

    outcome = dispatcher.handle_driver_response(winner.id, winner.driver_id, ACCEPTED, now=now + timedelta(seconds=12))

    assert outcome.success
    assert not outcome.requires_reassignment
    assert outcome.assignment.status == AssignmentStatus.ACCEPTED
    assert outcome.assignment.response_time == 12
    assert outcome.assignment.successful

    assert _statuses(store, "order-1") == {
        "driver_0": AssignmentStatus.CANCELLED,
        "driver_1": AssignmentStatus.ACCEPTED,
        "driver_2": AssignmentStatus.CANCELLED,
    }
    record = store.get_request("order-1")
    assert record.driver_id == "driver_1"
    assert record.status == RequestStatus.ASSIGNED

    assert store.get_history(winner.id).status == HistoryStatus.ACCEPTED
    assert store.get_history(offers[0].id).status == HistoryStatus.CANCELLED
    assert push_service.revocations == [(["driver_0", "driver_2"], "order-1")]


def test_late_sibling_accept_is_a_conflict(offers, dispatcher, store, now):
    first, second = offers[1], offers[0]
    dispatcher.handle_driver_response(first.id, first.driver_id, ACCEPTED, now=now + timedelta(seconds=5))

    with pytest.raises(AssignmentConflictError):
        dispatcher.handle_driver_response(second.id, second.driver_id, ACCEPTED, now=now + timedelta(seconds=6))

    # the loser's offer stays CANCELLED, not REJECTED
    assert store.get_assignment(second.id).status == AssignmentStatus.CANCELLED
    assert store.get_request("order-1").driver_id == first.driver_id


def test_responding_twice_is_a_conflict(offers, dispatcher, now):
    offer = offers[0]
    dispatcher.handle_driver_response(offer.id, offer.driver_id, REJECTED, now=now + timedelta(seconds=5))

    with pytest.raises(AssignmentConflictError):
        dispatcher.handle_driver_response(offer.id, offer.driver_id, ACCEPTED, now=now + timedelta(seconds=6))


def test_only_the_recipient_may_respond(offers, dispatcher, store, now):
    with pytest.raises(AuthorizationError):
        dispatcher.handle_driver_response(offers[0].id, "driver_2", ACCEPTED, now=now)

    assert store.get_assignment(offers[0].id).status == AssignmentStatus.PENDING


def test_unknown_assignment_and_bad_response(offers, dispatcher, now):
    with pytest.raises(AssignmentNotFoundError):
        dispatcher.handle_driver_response("missing", "driver_0", ACCEPTED, now=now)
    with pytest.raises(InvalidResponseError):
        dispatcher.handle_driver_response(offers[0].id, "driver_0", "MAYBE", now=now)


def test_single_rejection_keeps_waiting_for_siblings(offers, dispatcher, store, now):
    outcome = dispatcher.handle_driver_response(
        offers[0].id, "driver_0", REJECTED, rejection_reason="Too far", now=now + timedelta(seconds=20)
    )

    assert outcome.success
    assert not outcome.requires_reassignment
    assert outcome.assignment.rejection_reason == "Too far"
    assert not outcome.assignment.successful
    history = store.get_history(offers[0].id)
    assert history.status == HistoryStatus.REJECTED
    assert history.response_time == 20
    assert store.list_reassignments_for_request("order-1") == []


def test_last_rejection_queues_a_reassignment(offers, dispatcher, store, now):
    responses = [
        dispatcher.handle_driver_response(a.id, a.driver_id, REJECTED, rejection_reason="Busy",
                                          now=now + timedelta(seconds=10))
        for a in offers
    ]

    assert [r.requires_reassignment for r in responses] == [False, False, True]
    [item] = store.list_reassignments_for_request("order-1")
    assert item.status == QueueItemStatus.PENDING
    assert item.attempt == 1
    assert item.original_driver_id == "driver_2"
    assert item.rejection_reason == "Busy"
    # one above the last rejected offer
    assert item.priority == offers[2].priority + 1
    assert item.available_at == now + timedelta(seconds=10 + 30)


def test_concurrent_accepts_have_exactly_one_winner(offers, dispatcher, store, now):
    barrier = Barrier(len(offers))

    def accept(assignment):
        barrier.wait()
        try:
            dispatcher.handle_driver_response(assignment.id, assignment.driver_id, ACCEPTED,
                                              now=now + timedelta(seconds=3))
            return "won"
        except AssignmentConflictError:
            return "lost"

    with ThreadPoolExecutor(max_workers=len(offers)) as pool:
        results = list(pool.map(accept, offers))

    assert sorted(results) == ["lost", "lost", "won"]
    statuses = list(_statuses(store, "order-1").values())
    assert statuses.count(AssignmentStatus.ACCEPTED) == 1
    assert statuses.count(AssignmentStatus.CANCELLED) == 2


def test_accept_after_timeout_expires_the_offer(offers, dispatcher, store, now):
    offer = offers[0]

    with pytest.raises(AssignmentConflictError):
        dispatcher.handle_driver_response(offer.id, offer.driver_id, ACCEPTED, now=now + timedelta(seconds=61))

    assert store.get_assignment(offer.id).status == AssignmentStatus.EXPIRED
    assert store.get_request("order-1").driver_id is None


def test_expiry_sweep_requeues_the_request(offers, dispatcher, store, now):
    assert dispatcher.expire_overdue_assignments(now=now + timedelta(seconds=30)) == []

    expired = dispatcher.expire_overdue_assignments(now=now + timedelta(seconds=60))

    assert len(expired) == 3
    assert set(_statuses(store, "order-1").values()) == {AssignmentStatus.EXPIRED}
    assert store.get_history(offers[0].id).status == HistoryStatus.EXPIRED
    assert len(store.list_reassignments_for_request("order-1")) == 1


def test_expiry_never_overrides_an_accept(offers, dispatcher, store, now):
    dispatcher.handle_driver_response(offers[0].id, "driver_0", ACCEPTED, now=now + timedelta(seconds=59))

    assert dispatcher.expire_overdue_assignments(now=now + timedelta(seconds=90)) == []
    assert store.get_assignment(offers[0].id).status == AssignmentStatus.ACCEPTED
    assert store.list_reassignments_for_request("order-1") == []


def test_cancel_request_withdraws_pending_offers(offers, dispatcher, store, now):
    dispatcher.handle_driver_response(offers[0].id, "driver_0", REJECTED, now=now + timedelta(seconds=5))

    cancelled = dispatcher.cancel_request("order-1", now=now + timedelta(seconds=10))

    assert cancelled == 2
    assert _statuses(store, "order-1") == {
        "driver_0": AssignmentStatus.REJECTED,
        "driver_1": AssignmentStatus.CANCELLED,
        "driver_2": AssignmentStatus.CANCELLED,
    }
    assert store.get_request("order-1").status == RequestStatus.CANCELLED
    assert store.list_reassignments_for_request("order-1") == []


def test_cancel_request_cancels_queued_reassignment(dispatcher, store, make_request, now):
    outcome = dispatcher.dispatch_request(make_request("lonely"), now=now)
    assert outcome.queued_for_reassignment

    dispatcher.cancel_request("lonely", now=now)

    [item] = store.list_reassignments_for_request("lonely", statuses=list(QueueItemStatus))
    assert item.status == QueueItemStatus.CANCELLED


def test_complete_request_appends_to_history(offers, dispatcher, store, now):
    dispatcher.handle_driver_response(offers[0].id, "driver_0", ACCEPTED, now=now + timedelta(seconds=5))

    history = dispatcher.complete_request("order-1", now=now + timedelta(minutes=25))

    assert history.status == HistoryStatus.COMPLETED
    assert history.completed_at == now + timedelta(minutes=25)
    assert history.accepted_at == now + timedelta(seconds=5)
    assert store.get_request("order-1").status == RequestStatus.COMPLETED


def test_complete_without_accept_is_a_no_op(offers, dispatcher):
    assert dispatcher.complete_request("order-1") is None


def test_no_drivers_queues_once(dispatcher, store, make_request, now):
    first = dispatcher.dispatch_request(make_request("lonely"), now=now)
    second = dispatcher.dispatch_request(make_request("lonely"), now=now + timedelta(seconds=5))

    assert first.queued_for_reassignment
    assert not second.queued_for_reassignment
    assert len(store.list_reassignments_for_request("lonely")) == 1
    assert store.get_request("lonely").status == RequestStatus.SEARCHING


def test_offers_supersede_a_queued_reassignment(dispatcher, store, add_drivers, make_request, now):
    assert dispatcher.dispatch_request(make_request("order-1"), now=now).queued_for_reassignment
    add_drivers(3)

    outcome = dispatcher.dispatch_request(make_request("order-1"), now=now + timedelta(seconds=5))

    assert len(outcome.assignments) == 3
    assert store.list_reassignments_for_request("order-1") == []
    [item] = store.list_reassignments_for_request("order-1", statuses=list(QueueItemStatus))
    assert item.status == QueueItemStatus.CANCELLED


def test_rejection_with_an_item_already_queued_does_not_requeue(offers, dispatcher, store, now):
    existing = dispatcher.enqueue_reassignment("order-1", RequestType.ORDER, now=now)

    for offer in offers:
        outcome = dispatcher.handle_driver_response(
            offer.id, offer.driver_id, REJECTED, now=now + timedelta(seconds=5)
        )

    assert not outcome.requires_reassignment
    assert [item.id for item in store.list_reassignments_for_request("order-1")] == [existing.id]


def test_concurrent_enqueues_keep_one_active_item(dispatcher, store, make_request, now):
    store.save_request(RequestRecord.from_matching_request(make_request("order-1")))
    barrier = Barrier(4)

    def enqueue(_):
        barrier.wait()
        return dispatcher.enqueue_reassignment("order-1", RequestType.ORDER, now=now)

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(enqueue, range(4)))

    assert sum(item is not None for item in results) == 1
    assert len(store.list_reassignments_for_request("order-1")) == 1


def test_request_locks_are_released(offers, dispatcher, store, now):
    with store.lock("order-1"):
        with store.lock("order-1"):
            assert "order-1" in store._request_locks

    dispatcher.handle_driver_response(offers[0].id, "driver_0", ACCEPTED, now=now + timedelta(seconds=5))

    assert store._request_locks == {}
