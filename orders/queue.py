"""
Purpose: Manages the reassignment queue lifecycle (PENDING -> PROCESSING -> COMPLETED | FAILED).
What it does:
- Owns the recurring sweep over requests whose offers all ran out without an acceptance.

Provides operations:
   - run_cycle(now): claim up to batch_size due items and process each one
   - process_item(item, now): rebuild the request, widen the search radius, re-match
   - queue_summary(): counts per status

Applies escalation rules (not scoring):
 - attempt 1 searches with the config radius; attempt N > 1 with 20 + 5*N km
 - attempt >= max_attempts with no match -> FAILED (order/ride marked UNMATCHED)
 - a request that already holds PENDING offers is never offered again -> CANCELLED

Rule: Queue owns state transitions, the matching engine owns candidate selection.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models import (
    MatchingRequest,
    QueueItemStatus,
    ReassignmentQueueItem,
    RequestStatus,
    Requirements,
)

logger = logging.getLogger(__name__)

BASE_ESCALATION_RADIUS_KM = 20
ESCALATION_STEP_KM = 5


def escalated_radius_km(attempt: int) -> Optional[float]:
    """
    Search radius for a given attempt. None means "use the config default".
    """
    if attempt <= 1:
        return None
    return BASE_ESCALATION_RADIUS_KM + attempt * ESCALATION_STEP_KM


def build_request(record, item: ReassignmentQueueItem) -> MatchingRequest:
    """
    Rebuilds a fresh MatchingRequest from the order/ride's current state.
    """
    radius = escalated_radius_km(item.attempt)
    requirements = Requirements(max_distance=radius) if radius is not None else None
    request = record.to_matching_request(requirements)
    # reassignments jump the line
    return MatchingRequest(
        id=request.id,
        type=request.type,
        pickup=request.pickup,
        destination=request.destination,
        service_type=request.service_type,
        estimated_value=request.estimated_value,
        priority=max(request.priority, item.priority),
        requirements=request.requirements,
    )


class ReassignmentManager:
    """
    The active time-based "Heartbeat" for failed requests.
    Simulates a background cron job loop: each run_cycle is one sweep.
    """

    def __init__(self, store, dispatcher, batch_size: Optional[int] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.batch_size = batch_size or dispatcher.settings.reassignment_batch_size

    def run_cycle(self, now: Optional[datetime] = None) -> List[ReassignmentQueueItem]:
        """
        1. Lists due PENDING items by priority (desc) then age (asc), bounded by batch_size.
        2. Claims each one atomically; items claimed by another sweep are skipped.
        3. Processes it. One item's failure never stops the batch.
        """
        from dispatch.state_machines.queue_state import claim_item

        now = now or datetime.now(timezone.utc)
        processed: List[ReassignmentQueueItem] = []

        for item in self.store.list_due_reassignments(now, self.batch_size):
            claimed = claim_item(item, now)
            if not self.store.compare_and_set_queue_item(claimed, expected=QueueItemStatus.PENDING):
                continue
            try:
                processed.append(self.process_item(claimed, now))
            except Exception:
                logger.exception(f"Reassignment of {claimed.request_id} failed")
                processed.append(self._no_match(claimed, now))

        return processed

    def process_item(self, item: ReassignmentQueueItem, now: datetime) -> ReassignmentQueueItem:
        from dispatch.state_machines.queue_state import complete_item

        record = self.store.get_request(item.request_id)
        if record is None or record.status in (RequestStatus.CANCELLED, RequestStatus.ASSIGNED):
            return self._cancel(item, now)
        # offers made outside the sweep are still waiting on their drivers
        if self._has_live_offers(item.request_id):
            return self._cancel(item, now)

        request = build_request(record, item)
        result = self.dispatcher.engine.find_matches(request)
        if not (result.success and result.matches):
            return self._no_match(item, now)

        with self.store.lock(item.request_id):
            # the request may have been cancelled or re-offered while we were matching
            current = self.store.get_reassignment_item(item.id)
            if current is None or current.status != QueueItemStatus.PROCESSING:
                return current or item
            if self._has_live_offers(item.request_id):
                return self._cancel(item, now)

            assignments = self.dispatcher.create_assignments(request, result.matches, now=now)
            completed = complete_item(item, now, [a.id for a in assignments])
            self.store.compare_and_set_queue_item(completed, expected=QueueItemStatus.PROCESSING)

        logger.info(
            f"Reassigned {item.request_type.value} {item.request_id} on attempt {item.attempt} "
            f"({len(assignments)} offers)"
        )
        return completed

    def _has_live_offers(self, request_id: str) -> bool:
        from dispatch.models import AssignmentStatus

        return bool(self.store.list_assignments_for_request(request_id, AssignmentStatus.PENDING))

    def _cancel(self, item: ReassignmentQueueItem, now: datetime) -> ReassignmentQueueItem:
        from dispatch.state_machines.queue_state import cancel_item

        cancelled = cancel_item(item, now)
        self.store.compare_and_set_queue_item(cancelled, expected=QueueItemStatus.PROCESSING)
        return cancelled

    def _no_match(self, item: ReassignmentQueueItem, now: datetime) -> ReassignmentQueueItem:
        from dispatch.state_machines.queue_state import fail_item, retry_item

        if item.attempt >= item.max_attempts:
            failed = fail_item(item, now)
            if self.store.compare_and_set_queue_item(failed, expected=QueueItemStatus.PROCESSING):
                self.store.set_request_status(item.request_id, RequestStatus.UNMATCHED)
                logger.warning(
                    f"Giving up on {item.request_type.value} {item.request_id} after {item.attempt} attempts"
                )
            return failed

        config = self.dispatcher.config_provider.get_active_config()
        retried = retry_item(item, now, config.reassignment_delay)
        self.store.compare_and_set_queue_item(retried, expected=QueueItemStatus.PROCESSING)
        return retried

    def queue_summary(self) -> Dict[str, int]:
        return self.store.queue_summary()
