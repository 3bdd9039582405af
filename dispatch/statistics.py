"""
Purpose: Aggregate matching statistics for dashboards / observability collaborators.
What it does:
Summarizes the offers made in a time range: totals, success/failure, rates
(percentages, 0-100), mean driver response time, and a bounded sample of recent offers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from .models import AssignmentStatus, MatchingAssignment


@dataclass(frozen=True)
class MatchingStatistics:
    total_assignments: int
    successful_assignments: int
    failed_assignments: int
    success_rate: float
    avg_response_time: float  # seconds
    acceptance_rate: float
    assignments: List[MatchingAssignment] = field(default_factory=list)


def get_matching_statistics(store, start: datetime, end: datetime, sample_size: int = 50) -> MatchingStatistics:
    if start > end:
        raise ValueError("start must be <= end")

    assignments = store.list_assignments_between(start, end)
    total = len(assignments)
    successful = sum(1 for a in assignments if a.successful)
    accepted = sum(1 for a in assignments if a.status == AssignmentStatus.ACCEPTED)
    response_times = [a.response_time for a in assignments if a.response_time is not None]

    return MatchingStatistics(
        total_assignments=total,
        successful_assignments=successful,
        failed_assignments=total - successful,
        success_rate=successful / total * 100 if total else 0.0,
        avg_response_time=sum(response_times) / len(response_times) if response_times else 0.0,
        acceptance_rate=accepted / total * 100 if total else 0.0,
        assignments=assignments[:sample_size],
    )
