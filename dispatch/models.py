"""
Purpose: Stateful entities of the offer lifecycle.
What it does:
- MatchingAssignment: one time-boxed offer of a request to one driver.
  PENDING -> ACCEPTED | REJECTED | EXPIRED | CANCELLED (terminal states are final).
- DriverAssignmentHistory: append-only audit row mirroring each offer, with the
  scoring factors used, consumed later by the performance rollup.

Rule: Transitions are applied by dispatch.state_machines, never by assigning .status directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple
import uuid

from orders.models import RequestType

LatLon = Tuple[float, float]


class AssignmentStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class HistoryStatus(str, Enum):
    """
    Same as AssignmentStatus plus COMPLETED, appended once after delivery/ride completion.
    """
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


TERMINAL_ASSIGNMENT_STATES = frozenset({
    AssignmentStatus.ACCEPTED,
    AssignmentStatus.REJECTED,
    AssignmentStatus.EXPIRED,
    AssignmentStatus.CANCELLED,
})


@dataclass
class MatchingAssignment:
    driver_id: str
    request_id: str
    assignment_type: RequestType
    response_timeout: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    config_version: str = "1.0"
    config_id: Optional[str] = None
    status: AssignmentStatus = AssignmentStatus.PENDING
    # 10 for the best ranked candidate, 9 for the next, ...
    priority: int = 10

    total_score: float = 0.0
    distance_score: float = 0.0
    rating_score: float = 0.0
    completion_rate_score: float = 0.0
    response_time_score: float = 0.0
    availability_score: float = 0.0

    distance: float = 0.0  # km
    eta: int = 0  # minutes
    driver_location: Optional[LatLon] = None

    offered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    responded_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    response_time: Optional[int] = None  # seconds
    rejection_reason: Optional[str] = None
    successful: bool = False

    @property
    def order_id(self) -> Optional[str]:
        return self.request_id if self.assignment_type == RequestType.ORDER else None

    @property
    def ride_id(self) -> Optional[str]:
        return self.request_id if self.assignment_type == RequestType.RIDE else None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ASSIGNMENT_STATES


@dataclass
class DriverAssignmentHistory:
    assignment_id: str
    driver_id: str
    request_id: str
    assignment_type: RequestType
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: HistoryStatus = HistoryStatus.PENDING
    priority: int = 10
    distance: float = 0.0
    eta: int = 0
    matching_score: float = 0.0
    algorithm_version: str = "1.0"
    factors: Dict[str, float] = field(default_factory=dict)

    assigned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    response_time: Optional[int] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
