"""
Orders domain package.

Public API:
- Domain models: MatchingRequest, RequestRecord, Location, Requirements, RequestType,
  RequestStatus, ReassignmentQueueItem, QueueItemStatus
- Reassignment sweep: ReassignmentManager

Should not contain business logic.
"""
from .models import (
    Location,
    MatchingRequest,
    QueueItemStatus,
    ReassignmentQueueItem,
    RequestRecord,
    RequestStatus,
    RequestType,
    Requirements,
)
from .queue import ReassignmentManager

__all__ = [
    "Location",
    "MatchingRequest",
    "QueueItemStatus",
    "ReassignmentQueueItem",
    "RequestRecord",
    "RequestStatus",
    "RequestType",
    "Requirements",
    "ReassignmentManager",
]
