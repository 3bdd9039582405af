import math
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from dispatch.scoring import (
    DEFAULT_AVG_RESPONSE_TIME_SEC,
    DEFAULT_COMPLETION_RATE,
    availability_score,
    component_scores,
    completion_rate_score,
    distance_score,
    normalized_total,
    rank_candidates,
    rating_score,
    response_time_score,
)
from drivers.models import (
    BatteryStatus,
    ConnectionType,
    ConnectivityStatus,
    DriverPerformanceMetrics,
    VehicleType,
)
from drivers.policy import default_matching_config
from routing.eta_service import estimate_eta
from routing.geo import distance_between, haversine_km


def test_haversine_identity_and_symmetry():
    a = (-17.824858, 31.053028)
    b = (-17.80, 31.10)

    assert distance_between(a, a) == 0.0
    assert distance_between(a, b) == pytest.approx(distance_between(b, a))
    assert distance_between(a, b) > 0


def test_one_hundredth_degree_at_the_equator():
    # 6371 * 0.01 * pi / 180
    assert haversine_km(0.0, 0.0, 0.0, 0.01) == pytest.approx(1.112, abs=1e-3)


def test_eta_adds_buffer_and_never_drops_below_five_minutes():
    assert estimate_eta(0.0) == 5
    assert estimate_eta(1.112, VehicleType.CAR) == 8
    # 7.5 km by bicycle at 15 km/h = 30 min, + 5
    assert estimate_eta(7.5, VehicleType.BICYCLE) == 35
    # unknown vehicle classes use car speed
    assert estimate_eta(15.0, "HOVERCRAFT") == 35


def test_example_driver_one_kilometer_east(make_request, make_driver):
    request = make_request(lat=0.0, lon=0.0)
    driver = make_driver("d1", 0.0, 0.01, vehicle_type=VehicleType.CAR)

    [match] = rank_candidates(request, [driver], default_matching_config())

    assert match.distance == pytest.approx(1.11, abs=0.01)
    assert match.eta == 8
    assert match.scores.distance == pytest.approx(0.926, abs=1e-3)


@pytest.mark.parametrize("distance,expected", [(0.0, 1.0), (7.5, 0.5), (15.0, 0.0), (40.0, 0.0)])
def test_distance_score(distance, expected):
    assert distance_score(distance, 15.0) == pytest.approx(expected)


@pytest.mark.parametrize("rating,expected", [(1.0, 0.0), (3.0, 0.5), (5.0, 1.0), (0.0, 0.0), (6.0, 1.0)])
def test_rating_score_is_clamped(rating, expected):
    assert rating_score(rating) == pytest.approx(expected)


def test_completion_rate_caps_at_the_configured_floor():
    assert completion_rate_score(0.4, 0.8) == pytest.approx(0.5)
    assert completion_rate_score(0.8, 0.8) == 1.0
    assert completion_rate_score(1.0, 0.8) == 1.0


def test_response_time_score():
    assert response_time_score(0, 120) == 1.0
    assert response_time_score(60, 120) == pytest.approx(0.5)
    assert response_time_score(300, 120) == 0.0


def test_availability_score_uses_device_health(make_driver):
    plain = make_driver("plain")
    healthy = make_driver(
        "healthy",
        battery=BatteryStatus(battery_level=85),
        connectivity=ConnectivityStatus(signal_strength=80, connection_type=ConnectionType.WIFI),
    )
    weak = make_driver(
        "weak",
        battery=BatteryStatus(battery_level=10, low_battery=True),
        connectivity=ConnectivityStatus(signal_strength=20, connection_type=ConnectionType.CELLULAR),
    )

    assert availability_score(plain) == pytest.approx(0.5)
    assert availability_score(healthy) == pytest.approx(1.0)
    assert availability_score(weak) == pytest.approx(0.3)


def test_missing_metrics_fall_back_to_defaults(make_driver):
    config = default_matching_config()
    scores = component_scores(make_driver("new"), 0.0, config)

    assert scores.completion_rate == pytest.approx(DEFAULT_COMPLETION_RATE / config.min_completion_rate)
    assert scores.response_time == pytest.approx(1 - DEFAULT_AVG_RESPONSE_TIME_SEC / config.max_response_time)


def test_weekly_metrics_feed_the_score(make_driver):
    now = datetime(2024, 5, 15, tzinfo=timezone.utc)
    metrics = DriverPerformanceMetrics(
        driver_id="veteran",
        period_start=now,
        period_end=now,
        completion_rate=0.4,
        avg_response_time=30.0,
    )
    scores = component_scores(make_driver("veteran", metrics=metrics), 0.0, default_matching_config())

    assert scores.completion_rate == pytest.approx(0.5)
    assert scores.response_time == pytest.approx(0.75)


def test_every_component_is_bounded(make_driver):
    config = default_matching_config()
    for rating in (1.0, 2.5, 5.0):
        for distance in (0.0, 3.3, 15.0, 99.0):
            scores = component_scores(make_driver("d", rating=rating), distance, config)
            for value in scores.as_factors().values():
                assert 0.0 <= value <= 1.0


def test_total_is_not_renormalized(make_request, make_driver):
    config = replace(
        default_matching_config(),
        distance_weight=1.0,
        rating_weight=1.0,
        completion_rate_weight=1.0,
        response_time_weight=1.0,
        availability_weight=1.0,
    )
    request = make_request()
    [match] = rank_candidates(request, [make_driver("d", 0.0, 0.0, rating=5.0)], config)

    assert match.total_score == pytest.approx(sum(match.scores.as_factors().values()))
    assert match.total_score > 1.0
    assert normalized_total(match, config) == pytest.approx(match.total_score / 5)


def test_ranking_is_descending_and_stable_for_ties(make_request, make_driver):
    request = make_request()
    drivers = [
        make_driver("far", 0.0, 0.05),
        make_driver("tie_a", 0.0, 0.01),
        make_driver("tie_b", 0.0, 0.01),
    ]

    ranked = rank_candidates(request, drivers, default_matching_config())

    assert [m.driver_id for m in ranked] == ["tie_a", "tie_b", "far"]
    assert all(a.total_score >= b.total_score for a, b in zip(ranked, ranked[1:]))
    assert not math.isnan(ranked[0].total_score)
