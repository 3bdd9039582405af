from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

from orders.models import QueueItemStatus, ReassignmentQueueItem


class QueueStateException(Exception):
    """Raised when an invalid reassignment queue transition is attempted."""
    pass


def claim_item(item: ReassignmentQueueItem, now: datetime) -> ReassignmentQueueItem:
    """
    Called when the sweep picks up a PENDING item. Committed with a compare-and-set,
    so two sweeps can never both process the same item.
    """
    if item.status != QueueItemStatus.PENDING:
        raise QueueStateException(f"Cannot claim queue item {item.id} from {item.status.value}")
    return replace(item, status=QueueItemStatus.PROCESSING, processed_at=now)


def complete_item(item: ReassignmentQueueItem, now: datetime, assignment_ids) -> ReassignmentQueueItem:
    if item.status != QueueItemStatus.PROCESSING:
        raise QueueStateException(f"Queue item {item.id} is not PROCESSING. Current: {item.status.value}")
    return replace(
        item,
        status=QueueItemStatus.COMPLETED,
        completed_at=now,
        assignment_ids=list(assignment_ids),
    )


def fail_item(item: ReassignmentQueueItem, now: datetime) -> ReassignmentQueueItem:
    """
    Attempts exhausted. Terminal: the order/ride could not be matched.
    """
    if item.status != QueueItemStatus.PROCESSING:
        raise QueueStateException(f"Queue item {item.id} is not PROCESSING. Current: {item.status.value}")
    return replace(item, status=QueueItemStatus.FAILED, completed_at=now)


def retry_item(item: ReassignmentQueueItem, now: datetime, delay_seconds: int) -> ReassignmentQueueItem:
    """
    No match this round: bump the attempt counter and park the item until the delay has passed.
    """
    if item.status != QueueItemStatus.PROCESSING:
        raise QueueStateException(f"Queue item {item.id} is not PROCESSING. Current: {item.status.value}")
    return replace(
        item,
        status=QueueItemStatus.PENDING,
        attempt=item.attempt + 1,
        processed_at=None,
        available_at=now + timedelta(seconds=delay_seconds),
    )


def cancel_item(item: ReassignmentQueueItem, now: datetime) -> ReassignmentQueueItem:
    if item.status not in (QueueItemStatus.PENDING, QueueItemStatus.PROCESSING):
        raise QueueStateException(f"Cannot cancel queue item {item.id} from {item.status.value}")
    return replace(item, status=QueueItemStatus.CANCELLED, completed_at=now)
