#Purpose: Ranking/selection model (the "who is best" layer).
#Takes candidates (already eligible) + features (distance, rating, completion rate,
#response time, device health) and produces a score per driver and an ordered list.
#Every component score is normalized to [0, 1]. The total is a weighted sum using the
#active config's weights as relative multipliers: it is NOT divided by the weight sum,
#so it only stays within [0, 1] when the weights sum to 1.0.
#Ties keep the input order (stable sort).

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence

from drivers.models import ConnectionType, DriverCandidate
from drivers.policy import MatchingAlgorithmConfig
from routing.eta_service import estimate_eta
from routing.geo import distance_between

# used when a driver has no weekly metrics yet
DEFAULT_COMPLETION_RATE = 0.5
DEFAULT_AVG_RESPONSE_TIME_SEC = 60.0


@dataclass(frozen=True)
class ComponentScores:
    distance: float
    rating: float
    completion_rate: float
    response_time: float
    availability: float

    def as_factors(self) -> Dict[str, float]:
        return {
            "distanceScore": self.distance,
            "ratingScore": self.rating,
            "completionRateScore": self.completion_rate,
            "responseTimeScore": self.response_time,
            "availabilityScore": self.availability,
        }


@dataclass(frozen=True)
class DriverMatch:
    """
    One scored candidate for a request.
    """
    driver: DriverCandidate
    distance: float  # km
    eta: int  # minutes
    scores: ComponentScores
    total_score: float

    @property
    def driver_id(self) -> str:
        return self.driver.id


def distance_score(distance_km: float, max_distance_km: float) -> float:
    return max(0.0, 1.0 - distance_km / max_distance_km)


def rating_score(rating: float) -> float:
    # 1-5 star scale onto 0-1
    return min(1.0, max(0.0, (rating - 1.0) / 4.0))


def completion_rate_score(completion_rate: float, min_completion_rate: float) -> float:
    """
    Meeting the configured floor already scores 1.0; exceeding it earns nothing extra.
    """
    return min(1.0, max(0.0, completion_rate / min_completion_rate))


def response_time_score(avg_response_time_sec: float, max_response_time_sec: float) -> float:
    return max(0.0, 1.0 - avg_response_time_sec / max_response_time_sec)


def availability_score(driver: DriverCandidate) -> float:
    score = 0.5

    battery = driver.battery
    if battery is not None:
        if battery.battery_level >= 50:
            score += 0.2
        if battery.battery_level >= 80:
            score += 0.1
        if battery.low_battery:
            score -= 0.2

    connectivity = driver.connectivity
    if connectivity is not None:
        if connectivity.signal_strength >= 70:
            score += 0.1
        if connectivity.connection_type == ConnectionType.WIFI:
            score += 0.1

    return max(0.0, min(1.0, score))


def component_scores(driver: DriverCandidate, distance_km: float, config: MatchingAlgorithmConfig) -> ComponentScores:
    metrics = driver.metrics
    completion_rate = metrics.completion_rate if metrics and metrics.completion_rate else DEFAULT_COMPLETION_RATE
    avg_response_time = metrics.avg_response_time if metrics and metrics.avg_response_time else DEFAULT_AVG_RESPONSE_TIME_SEC

    return ComponentScores(
        distance=distance_score(distance_km, config.max_distance),
        rating=rating_score(driver.rating),
        completion_rate=completion_rate_score(completion_rate, config.min_completion_rate),
        response_time=response_time_score(avg_response_time, config.max_response_time),
        availability=availability_score(driver),
    )


def total_score(scores: ComponentScores, config: MatchingAlgorithmConfig) -> float:
    return (
        scores.distance * config.distance_weight
        + scores.rating * config.rating_weight
        + scores.completion_rate * config.completion_rate_weight
        + scores.response_time * config.response_time_weight
        + scores.availability * config.availability_weight
    )


def normalized_total(match: DriverMatch, config: MatchingAlgorithmConfig) -> float:
    """
    Total score divided by the weight sum, for consumers that need [0, 1].
    """
    return match.total_score / config.weight_sum()


def score_candidate(request, driver: DriverCandidate, config: MatchingAlgorithmConfig) -> DriverMatch:
    distance = distance_between(request.pickup.coordinates, driver.location)
    scores = component_scores(driver, distance, config)
    return DriverMatch(
        driver=driver,
        distance=distance,
        eta=estimate_eta(distance, driver.vehicle_type),
        scores=scores,
        total_score=total_score(scores, config),
    )


def rank_candidates(
    request,
    candidates: Sequence[DriverCandidate],
    config: MatchingAlgorithmConfig,
) -> List[DriverMatch]:
    """
    Scores every candidate and sorts by total score, best first.
    """
    matches = [score_candidate(request, driver, config) for driver in candidates]
    return sorted(matches, key=lambda match: match.total_score, reverse=True)
