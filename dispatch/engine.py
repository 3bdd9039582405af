"""
Purpose: The matching "orchestrator" (single entry point for one request).
What it does:

Coordinates the pipeline end-to-end:

- validates the MatchingRequest

- locates eligible drivers (drivers/selection.py)

- scores and ranks them (dispatch/scoring.py)

- truncates to the config's max_assignments and estimates the wait time

Typical public call:

- MatchingEngine(store, config_provider).find_matches(request) -> MatchingResult

find_matches never raises. Invalid input, an empty driver pool and infrastructure
failures all come back as MatchingResult(success=False) with a distinct error_code,
and every result carries the algorithm provenance block.

Rule: Engine is the only class other modules should call directly for matching.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from drivers.policy import AlgorithmType, MatchingAlgorithmConfig
from drivers.selection import locate_candidates
from orders.models import MatchingRequest, RequestType
from .config_provider import ConfigProvider
from .scoring import DriverMatch, rank_candidates
from .store import MatchingStore

logger = logging.getLogger(__name__)


class MatchErrorCode(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    NO_DRIVERS = "NO_DRIVERS"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_MESSAGES = {
    MatchErrorCode.INVALID_REQUEST: "Invalid request parameters",
    MatchErrorCode.NO_DRIVERS: "No available drivers found",
    MatchErrorCode.INTERNAL_ERROR: "Internal matching service error",
}


@dataclass(frozen=True)
class AlgorithmInfo:
    type: AlgorithmType
    version: str
    processing_time: float  # milliseconds


@dataclass(frozen=True)
class MatchingResult:
    success: bool
    algorithm: AlgorithmInfo
    matches: List[DriverMatch] = field(default_factory=list)
    estimated_wait_time: Optional[int] = None  # minutes, ETA of the best match
    error: Optional[str] = None
    error_code: Optional[MatchErrorCode] = None


def validate_request(request: MatchingRequest) -> Optional[str]:
    """
    Returns a description of the first problem found, or None when the request is usable.
    """
    if not request.id:
        return "request id is required"
    if request.type is None:
        return "request type is required"
    if not request.service_type:
        return "service type is required"
    if request.pickup is None or not request.pickup.is_complete():
        return "pickup coordinates are required"
    if request.type == RequestType.RIDE:
        if request.destination is None or not request.destination.is_complete():
            return "destination coordinates are required for rides"
    return None


class MatchingEngine:
    """
    Finds and ranks the best available drivers for a request.
    """

    def __init__(self, store: MatchingStore, config_provider: Optional[ConfigProvider] = None):
        self.store = store
        self.config_provider = config_provider or ConfigProvider(store)

    def refresh_config(self) -> MatchingAlgorithmConfig:
        return self.config_provider.refresh_config()

    def find_matches(self, request: MatchingRequest) -> MatchingResult:
        start = time.perf_counter()
        config = self.config_provider.get_active_config()

        def algorithm() -> AlgorithmInfo:
            elapsed_ms = (time.perf_counter() - start) * 1000
            return AlgorithmInfo(type=config.algorithm_type, version=config.version, processing_time=elapsed_ms)

        def failure(code: MatchErrorCode) -> MatchingResult:
            return MatchingResult(
                success=False,
                algorithm=algorithm(),
                error=ERROR_MESSAGES[code],
                error_code=code,
            )

        problem = validate_request(request)
        if problem is not None:
            logger.warning(f"Rejected matching request {getattr(request, 'id', None)}: {problem}")
            return failure(MatchErrorCode.INVALID_REQUEST)

        try:
            candidates = locate_candidates(self.store, request, config)
            if not candidates:
                logger.warning(f"No available drivers for {request.type.value} {request.id}")
                return failure(MatchErrorCode.NO_DRIVERS)

            ranked = rank_candidates(request, candidates, config)
            top_matches = ranked[: config.max_assignments]
        except Exception:
            logger.exception(f"Matching failed for request {request.id}")
            return failure(MatchErrorCode.INTERNAL_ERROR)

        return MatchingResult(
            success=True,
            algorithm=algorithm(),
            matches=top_matches,
            estimated_wait_time=top_matches[0].eta if top_matches else 0,
        )
