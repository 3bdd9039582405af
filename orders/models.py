"""
Purpose: Domain models for the Orders capability.
What it does:
- Defines core data structures:
- MatchingRequest (transient: one matching attempt for an order or a ride)
- RequestRecord (persisted order/ride state the request is rebuilt from)
- ReassignmentQueueItem (a failed request waiting for another matching attempt)

Defines enums/constants:
- RequestType = ORDER | RIDE
- RequestStatus = SEARCHING | ASSIGNED | UNMATCHED | CANCELLED | COMPLETED
- QueueItemStatus = PENDING | PROCESSING | COMPLETED | FAILED | CANCELLED

Rule: No scoring, no persistence. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple
import uuid

from drivers.models import ServiceType, VehicleType

LatLon = Tuple[float, float]


class RequestType(str, Enum):
    ORDER = "ORDER"
    RIDE = "RIDE"


class RequestStatus(str, Enum):
    SEARCHING = "SEARCHING"
    ASSIGNED = "ASSIGNED"
    UNMATCHED = "UNMATCHED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class QueueItemStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class Location:
    latitude: Optional[float]
    longitude: Optional[float]
    address: Optional[str] = None

    @property
    def coordinates(self) -> LatLon:
        return (self.latitude, self.longitude)

    def is_complete(self) -> bool:
        # 0.0 is a valid coordinate, only a missing value is not
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class Requirements:
    """
    Hard constraints a specific request places on top of the active config.
    """
    vehicle_type: Optional[VehicleType] = None
    min_rating: Optional[float] = None
    max_distance: Optional[float] = None  # km
    special_requirements: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CustomerPreferences:
    allow_shared: bool = False
    preferred_gender: Optional[str] = None
    accessibility_needs: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MatchingRequest:
    """
    One matching attempt for an order or a ride. Immutable; rebuilt from the
    RequestRecord on every reassignment cycle.
    """
    id: str
    type: RequestType
    pickup: Location
    service_type: ServiceType
    destination: Optional[Location] = None
    estimated_value: Optional[float] = None
    priority: int = 0
    requirements: Requirements = field(default_factory=Requirements)
    scheduled_for: Optional[datetime] = None
    customer_preferences: CustomerPreferences = field(default_factory=CustomerPreferences)


@dataclass
class RequestRecord:
    """
    The persisted order/ride as the matching engine sees it.
    driver_id is set exactly once, when an offer is accepted.
    """
    id: str
    request_type: RequestType
    pickup: Location
    service_type: ServiceType
    destination: Optional[Location] = None
    estimated_value: Optional[float] = None
    priority: int = 0
    driver_id: Optional[str] = None
    status: RequestStatus = RequestStatus.SEARCHING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_matching_request(self, requirements: Optional[Requirements] = None) -> MatchingRequest:
        return MatchingRequest(
            id=self.id,
            type=self.request_type,
            pickup=self.pickup,
            destination=self.destination,
            service_type=self.service_type,
            estimated_value=self.estimated_value,
            priority=self.priority,
            requirements=requirements or Requirements(),
        )

    @staticmethod
    def from_matching_request(request: MatchingRequest) -> RequestRecord:
        return RequestRecord(
            id=request.id,
            request_type=request.type,
            pickup=request.pickup,
            destination=request.destination,
            service_type=request.service_type,
            estimated_value=request.estimated_value,
            priority=request.priority,
        )


@dataclass
class ReassignmentQueueItem:
    """
    A request whose last pending offer resolved without an acceptance.
    """
    request_id: str
    request_type: RequestType
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    original_driver_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    attempt: int = 1
    max_attempts: int = 3
    priority: int = 0
    status: QueueItemStatus = QueueItemStatus.PENDING

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # not offered to the sweep before this moment (reassignment delay)
    available_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # assignment ids created by the successful attempt
    assignment_ids: List[str] = field(default_factory=list)
