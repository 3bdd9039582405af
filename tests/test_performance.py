from datetime import datetime, timedelta, timezone

import pytest

from dispatch.dispatcher import ACCEPTED, REJECTED
from drivers.performance import PerformanceAggregator, week_window


def test_week_window_runs_monday_to_sunday(now):
    start, end = week_window(now)

    assert start == datetime(2024, 5, 13, tzinfo=timezone.utc)
    assert end == datetime(2024, 5, 19, 23, 59, 59, 999999, tzinfo=timezone.utc)
    assert start.weekday() == 0
    assert week_window(start) == (start, end)
    assert week_window(end) == (start, end)


@pytest.fixture
def busy_week(dispatcher, store, make_driver, make_request, now):
    """
    driver "solo" gets three offers this week: one accepted and completed (10s),
    one rejected (20s) and one left to expire.
    """
    store.save_driver(make_driver("solo", 0.0, 0.01))

    first = dispatcher.dispatch_request(make_request("order-1"), now=now).assignments[0]
    dispatcher.handle_driver_response(first.id, "solo", ACCEPTED, now=now + timedelta(seconds=10))
    dispatcher.complete_request("order-1", now=now + timedelta(minutes=20))

    second = dispatcher.dispatch_request(make_request("order-2"), now=now).assignments[0]
    dispatcher.handle_driver_response(second.id, "solo", REJECTED, now=now + timedelta(seconds=20))

    dispatcher.dispatch_request(make_request("order-3"), now=now)
    dispatcher.expire_overdue_assignments(now=now + timedelta(minutes=5))


def test_weekly_rollup(busy_week, store, now):
    metrics = PerformanceAggregator(store).update_driver_performance_metrics("solo", now=now)

    assert metrics.total_assignments == 3
    assert metrics.accepted_assignments == 1
    assert metrics.completed_assignments == 1
    assert metrics.rejected_assignments == 1
    assert metrics.expired_assignments == 1
    assert metrics.acceptance_rate == pytest.approx(1 / 3)
    assert metrics.completion_rate == pytest.approx(1.0)
    assert metrics.avg_response_time == pytest.approx(15.0)
    assert metrics.period == "weekly"


def test_rollup_is_idempotent_within_a_week(busy_week, store, now):
    aggregator = PerformanceAggregator(store)

    first = aggregator.update_driver_performance_metrics("solo", now=now)
    second = aggregator.update_driver_performance_metrics("solo", now=now + timedelta(days=2))

    assert first == second
    assert store.get_latest_metrics("solo") == first


def test_rollup_feeds_the_candidate_pool(busy_week, store, now):
    PerformanceAggregator(store).update_driver_performance_metrics("solo", now=now)

    [driver] = store.list_available_drivers()
    assert driver.metrics.completion_rate == pytest.approx(1.0)


def test_driver_without_history_has_no_row(store, make_driver, now):
    store.save_driver(make_driver("idle"))

    assert PerformanceAggregator(store).update_driver_performance_metrics("idle", now=now) is None
    assert store.get_latest_metrics("idle") is None


def test_last_week_is_not_counted(busy_week, store, now):
    next_week = now + timedelta(days=7)

    assert PerformanceAggregator(store).update_driver_performance_metrics("solo", now=next_week) is None


def test_update_all_skips_failures(busy_week, store, now, monkeypatch):
    aggregator = PerformanceAggregator(store)
    original = store.list_history

    def flaky(driver_id, start, end):
        if driver_id == "broken":
            raise RuntimeError("history unavailable")
        return original(driver_id, start, end)

    monkeypatch.setattr(store, "list_history", flaky)

    updated = aggregator.update_all(["broken", "solo", "nobody"], now=now)

    assert [m.driver_id for m in updated] == ["solo"]
