"""
Purpose: Central configuration for driver matching (single source of truth for tuning).
What it does:

Stores all tunable weights/thresholds for scoring and offering work to drivers:

DISTANCE_WEIGHT = 0.40, RATING_WEIGHT = 0.25, COMPLETION_RATE_WEIGHT = 0.20,
RESPONSE_TIME_WEIGHT = 0.10, AVAILABILITY_WEIGHT = 0.05

MAX_DISTANCE_KM = 15, MAX_ASSIGNMENTS = 3, ASSIGNMENT_TIMEOUT_SEC = 60

Rule: No logic here—just parameters so you can tune without rewriting code.
Weights are relative multipliers and are NOT renormalized; total scores are only
bounded by [0, 1] when the weights happen to sum to 1.0 (see weight_sum()).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class AlgorithmType(str, Enum):
    PROXIMITY_BASED = "PROXIMITY_BASED"
    PERFORMANCE_BASED = "PERFORMANCE_BASED"
    HYBRID = "HYBRID"
    MACHINE_LEARNING = "MACHINE_LEARNING"


DEFAULT_CONFIG_NAME = "Default Hybrid Algorithm"


@dataclass(frozen=True)
class MatchingAlgorithmConfig:
    """
    Versioned tuning object. Exactly one config is active at a time.
    """
    name: str = DEFAULT_CONFIG_NAME
    algorithm_type: AlgorithmType = AlgorithmType.HYBRID
    version: str = "1.0"
    is_active: bool = False
    id: Optional[str] = None

    # --- Component weights ---
    distance_weight: float = 0.40
    rating_weight: float = 0.25
    completion_rate_weight: float = 0.20
    response_time_weight: float = 0.10
    availability_weight: float = 0.05

    # --- Hard thresholds ---
    max_distance: float = 15.0  # km
    min_rating: float = 3.0
    min_completion_rate: float = 0.8
    max_response_time: float = 120.0  # seconds

    # --- Offer behaviour ---
    # How many drivers see the same offer simultaneously.
    max_assignments: int = 3
    # Seconds a driver has to respond before the offer expires.
    assignment_timeout: int = 60
    # Seconds a failed request waits in the reassignment queue before the next attempt.
    reassignment_delay: int = 30

    # --- Feature flags (stored, not used by scoring) ---
    enable_surge_matching: bool = True
    enable_batch_matching: bool = False
    enable_predictive_matching: bool = False

    created_at: Optional[datetime] = None

    def weight_sum(self) -> float:
        """
        Sum of the five weights. Callers needing a [0, 1] total divide by this.
        """
        return (
            self.distance_weight
            + self.rating_weight
            + self.completion_rate_weight
            + self.response_time_weight
            + self.availability_weight
        )

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        weights = (
            self.distance_weight,
            self.rating_weight,
            self.completion_rate_weight,
            self.response_time_weight,
            self.availability_weight,
        )
        if any(weight < 0 for weight in weights):
            raise ValueError("weights must be >= 0")
        if self.weight_sum() <= 0:
            raise ValueError("at least one weight must be > 0")

        if self.max_distance <= 0:
            raise ValueError("max_distance must be > 0")
        if not 1.0 <= self.min_rating <= 5.0:
            raise ValueError("min_rating must be within [1, 5]")
        if not 0.0 < self.min_completion_rate <= 1.0:
            raise ValueError("min_completion_rate must be within (0, 1]")
        if self.max_response_time <= 0:
            raise ValueError("max_response_time must be > 0")

        if self.max_assignments < 1:
            raise ValueError("max_assignments must be >= 1")
        if self.assignment_timeout <= 0:
            raise ValueError("assignment_timeout must be > 0")
        if self.reassignment_delay < 0:
            raise ValueError("reassignment_delay must be >= 0")


def default_matching_config() -> MatchingAlgorithmConfig:
    """
    Convenience factory for the default config.
    """
    config = MatchingAlgorithmConfig()
    config.validate()
    return config
