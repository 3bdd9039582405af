"""
Purpose: Orchestrator / decision pipeline (the "glue") for offers.
What it does:
Turns a ranked match list into simultaneous, time-boxed offers (one per top-N driver),
resolves the driver responses with single-winner semantics, expires stale offers,
and hands requests that ran out of offers to the reassignment queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from orders.models import (
    MatchingRequest,
    ReassignmentQueueItem,
    RequestRecord,
    RequestStatus,
)
from .config_provider import ConfigProvider
from .engine import MatchErrorCode, MatchingEngine, MatchingResult
from .exceptions import (
    AssignmentConflictError,
    AssignmentNotFoundError,
    AuthorizationError,
    InvalidResponseError,
)
from .models import (
    AssignmentStatus,
    DriverAssignmentHistory,
    HistoryStatus,
    MatchingAssignment,
)
from .scoring import DriverMatch
from .settings import EngineSettings
from .statistics import MatchingStatistics, get_matching_statistics
from .state_machines.assignment_state import (
    accept_assignment,
    cancel_assignment,
    expire_assignment,
    history_outcome,
    reject_assignment,
)
from .state_machines.queue_state import cancel_item
from .store import MatchingStore

logger = logging.getLogger(__name__)

ACCEPTED = "ACCEPTED"
REJECTED = "REJECTED"

# priority of the best ranked offer; each following rank gets one less
TOP_PRIORITY = 10


@dataclass(frozen=True)
class ResponseOutcome:
    success: bool
    requires_reassignment: bool
    assignment: MatchingAssignment


@dataclass(frozen=True)
class DispatchOutcome:
    result: MatchingResult
    assignments: List[MatchingAssignment] = field(default_factory=list)
    queued_for_reassignment: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Dispatcher:
    """
    Coordinates the transaction of a request to a driver using simultaneous top-N offers.
    """

    def __init__(
        self,
        store: MatchingStore,
        engine: Optional[MatchingEngine] = None,
        config_provider: Optional[ConfigProvider] = None,
        settings: Optional[EngineSettings] = None,
        push_service=None,
    ):
        self.store = store
        self.settings = settings or EngineSettings.from_env()
        self.config_provider = config_provider or (
            engine.config_provider if engine else ConfigProvider(store, self.settings.default_config_name)
        )
        self.engine = engine or MatchingEngine(store, self.config_provider)
        self.push_service = push_service

    # --- Offer creation ---

    def create_assignments(
        self,
        request: MatchingRequest,
        matches: Sequence[DriverMatch],
        now: Optional[datetime] = None,
    ) -> List[MatchingAssignment]:
        """
        One PENDING offer per ranked match (index 0 = best), persisted as a single batch.
        """
        now = now or _utcnow()
        config = self.config_provider.get_active_config()
        timeout = now + timedelta(seconds=config.assignment_timeout)

        assignments: List[MatchingAssignment] = []
        histories: List[DriverAssignmentHistory] = []

        for index, match in enumerate(matches):
            priority = TOP_PRIORITY - index
            assignment = MatchingAssignment(
                driver_id=match.driver_id,
                request_id=request.id,
                assignment_type=request.type,
                response_timeout=timeout,
                config_version=config.version,
                config_id=config.id,
                priority=priority,
                total_score=match.total_score,
                distance_score=match.scores.distance,
                rating_score=match.scores.rating,
                completion_rate_score=match.scores.completion_rate,
                response_time_score=match.scores.response_time,
                availability_score=match.scores.availability,
                distance=match.distance,
                eta=match.eta,
                driver_location=match.driver.location,
                offered_at=now,
            )
            assignments.append(assignment)
            histories.append(
                DriverAssignmentHistory(
                    assignment_id=assignment.id,
                    driver_id=match.driver_id,
                    request_id=request.id,
                    assignment_type=request.type,
                    priority=priority,
                    distance=match.distance,
                    eta=match.eta,
                    matching_score=match.total_score,
                    algorithm_version=config.version,
                    factors=match.scores.as_factors(),
                    assigned_at=now,
                )
            )

        if self.store.get_request(request.id) is None:
            self.store.save_request(RequestRecord.from_matching_request(request))

        self.store.create_assignments(assignments, histories)
        logger.info(f"Offered {request.type.value} {request.id} to {len(assignments)} drivers")

        if self.push_service and assignments:
            self.push_service.broadcast_offer([a.driver_id for a in assignments], request)

        return assignments

    def dispatch_request(self, request: MatchingRequest, now: Optional[datetime] = None) -> DispatchOutcome:
        """
        The "one call" entry point: match, then offer, or park the request in the
        reassignment queue when nobody is available right now.
        """
        now = now or _utcnow()
        result = self.engine.find_matches(request)

        if result.success and result.matches:
            with self.store.lock(request.id):
                assignments = self.create_assignments(request, result.matches, now=now)
                # the fresh offers supersede a queued retry from an earlier NO_DRIVERS round
                self._cancel_queued_reassignments(request.id, now)
            return DispatchOutcome(result=result, assignments=assignments)

        if result.error_code == MatchErrorCode.NO_DRIVERS:
            if self.store.get_request(request.id) is None:
                self.store.save_request(RequestRecord.from_matching_request(request))
            queued = self.enqueue_reassignment(
                request.id, request.type, priority=request.priority, now=now
            )
            return DispatchOutcome(result=result, queued_for_reassignment=queued is not None)

        return DispatchOutcome(result=result)

    # --- Driver responses ---

    def handle_driver_response(
        self,
        assignment_id: str,
        driver_id: str,
        response: str,
        rejection_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ResponseOutcome:
        """
        Race Condition Resolver: called when a driver hits "Accept" or "Decline".
        Guarantees that two drivers can never both accept the same request.
        """
        response = getattr(response, "value", response)
        if response not in (ACCEPTED, REJECTED):
            raise InvalidResponseError(f"Unsupported response {response!r}")

        now = now or _utcnow()
        assignment = self.store.get_assignment(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
        if assignment.driver_id != driver_id:
            raise AuthorizationError(f"Driver {driver_id} is not the recipient of assignment {assignment_id}")

        with self.store.lock(assignment.request_id):
            # re-read under the lock: a sibling accept or the expiry sweep may have won
            assignment = self.store.get_assignment(assignment_id)
            if assignment.status != AssignmentStatus.PENDING:
                logger.warning(
                    f"Driver {driver_id} responded to assignment {assignment_id} "
                    f"which is already {assignment.status.value}"
                )
                raise AssignmentConflictError(f"Assignment {assignment_id} is no longer available")

            if now > assignment.response_timeout:
                self._expire_locked(assignment, now)
            else:
                response_time = int((now - assignment.offered_at).total_seconds())
                if response == ACCEPTED:
                    return self._accept_locked(assignment, now, response_time)
                return self._reject_locked(assignment, now, response_time, rejection_reason)

        # raised outside the lock so a transactional store keeps the expiry
        raise AssignmentConflictError(f"Assignment {assignment_id} expired before the response")

    def _accept_locked(self, assignment: MatchingAssignment, now: datetime, response_time: int) -> ResponseOutcome:
        accepted = accept_assignment(assignment, now, response_time)
        if not self.store.compare_and_set_assignment(accepted, expected=AssignmentStatus.PENDING):
            raise AssignmentConflictError(f"Assignment {assignment.id} is no longer available")

        self.store.bind_driver(assignment.request_id, assignment.driver_id)
        self._record_history(accepted.id, HistoryStatus.ACCEPTED, now, response_time=response_time)

        revoked = []
        for sibling in self.store.list_assignments_for_request(assignment.request_id, AssignmentStatus.PENDING):
            if self.store.compare_and_set_assignment(cancel_assignment(sibling, now), expected=AssignmentStatus.PENDING):
                self._record_history(sibling.id, HistoryStatus.CANCELLED, now)
                revoked.append(sibling.driver_id)

        logger.info(
            f"Driver {assignment.driver_id} accepted {assignment.assignment_type.value} "
            f"{assignment.request_id}; cancelled {len(revoked)} sibling offers"
        )
        if self.push_service and revoked:
            self.push_service.revoke_offer(revoked, assignment.request_id)

        return ResponseOutcome(success=True, requires_reassignment=False, assignment=accepted)

    def _reject_locked(
        self,
        assignment: MatchingAssignment,
        now: datetime,
        response_time: int,
        reason: Optional[str],
    ) -> ResponseOutcome:
        rejected = reject_assignment(assignment, now, response_time, reason)
        if not self.store.compare_and_set_assignment(rejected, expected=AssignmentStatus.PENDING):
            raise AssignmentConflictError(f"Assignment {assignment.id} is no longer available")

        self._record_history(
            rejected.id, HistoryStatus.REJECTED, now, response_time=response_time, rejection_reason=reason
        )
        logger.info(f"Driver {assignment.driver_id} rejected assignment {assignment.id}: {reason or 'no reason'}")

        requires_reassignment = self._requeue_if_exhausted(assignment, now, reason)
        return ResponseOutcome(success=True, requires_reassignment=requires_reassignment, assignment=rejected)

    # --- Expiry sweep ---

    def expire_overdue_assignments(self, now: Optional[datetime] = None) -> List[MatchingAssignment]:
        """
        Background sweep: PENDING offers past their response timeout become EXPIRED.
        Safe against a concurrent accept: whichever commits first wins, the other is a no-op.
        """
        now = now or _utcnow()
        expired: List[MatchingAssignment] = []

        for overdue in self.store.list_overdue_assignments(now):
            with self.store.lock(overdue.request_id):
                current = self.store.get_assignment(overdue.id)
                if current is None or current.status != AssignmentStatus.PENDING:
                    continue
                result = self._expire_locked(current, now)
                if result is not None:
                    expired.append(result)

        if expired:
            logger.warning(f"Expired {len(expired)} unanswered offers")
        return expired

    def _expire_locked(self, assignment: MatchingAssignment, now: datetime) -> Optional[MatchingAssignment]:
        expired = expire_assignment(assignment, now)
        if not self.store.compare_and_set_assignment(expired, expected=AssignmentStatus.PENDING):
            return None
        self._record_history(expired.id, HistoryStatus.EXPIRED, now)
        self._requeue_if_exhausted(assignment, now, "EXPIRED")
        return expired

    # --- Upstream lifecycle ---

    def cancel_request(self, request_id: str, now: Optional[datetime] = None) -> int:
        """
        Upstream cancellation of the order/ride: pending offers become CANCELLED and any
        queued reassignment is cancelled. Returns the number of offers cancelled.
        """
        now = now or _utcnow()
        cancelled = 0
        with self.store.lock(request_id):
            for pending in self.store.list_assignments_for_request(request_id, AssignmentStatus.PENDING):
                if self.store.compare_and_set_assignment(cancel_assignment(pending, now), expected=AssignmentStatus.PENDING):
                    self._record_history(pending.id, HistoryStatus.CANCELLED, now)
                    cancelled += 1

            self._cancel_queued_reassignments(request_id, now)
            self.store.set_request_status(request_id, RequestStatus.CANCELLED)

        logger.info(f"Cancelled request {request_id} ({cancelled} pending offers withdrawn)")
        return cancelled

    def complete_request(self, request_id: str, now: Optional[datetime] = None) -> Optional[DriverAssignmentHistory]:
        """
        The accepted driver finished the delivery/ride. Appends COMPLETED to the audit row.
        """
        now = now or _utcnow()
        with self.store.lock(request_id):
            accepted = self.store.list_assignments_for_request(request_id, AssignmentStatus.ACCEPTED)
            if not accepted:
                return None
            history = self._record_history(accepted[0].id, HistoryStatus.COMPLETED, now)
            self.store.set_request_status(request_id, RequestStatus.COMPLETED)
        return history

    # --- Reassignment hand-off ---

    def enqueue_reassignment(
        self,
        request_id: str,
        request_type,
        *,
        original_driver_id: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        priority: int = 0,
        now: Optional[datetime] = None,
    ) -> Optional[ReassignmentQueueItem]:
        """
        Parks a request for the reassignment sweep. At most one active item per request.
        """
        now = now or _utcnow()
        config = self.config_provider.get_active_config()

        with self.store.lock(request_id):
            if self.store.list_reassignments_for_request(request_id):
                return None

            item = ReassignmentQueueItem(
                request_id=request_id,
                request_type=request_type,
                original_driver_id=original_driver_id,
                rejection_reason=rejection_reason,
                max_attempts=self.settings.max_reassignment_attempts,
                priority=priority,
                created_at=now,
                available_at=now + timedelta(seconds=config.reassignment_delay),
            )
            self.store.enqueue_reassignment(item)
            self.store.set_request_status(request_id, RequestStatus.SEARCHING)

        logger.info(f"Queued {request_type.value} {request_id} for reassignment (priority {priority})")
        return item

    def _cancel_queued_reassignments(self, request_id: str, now: datetime) -> int:
        cancelled = 0
        for item in self.store.list_reassignments_for_request(request_id):
            if self.store.compare_and_set_queue_item(cancel_item(item, now), expected=item.status):
                cancelled += 1
        if cancelled:
            logger.info(f"Withdrew {cancelled} queued reassignment(s) for {request_id}")
        return cancelled

    def _requeue_if_exhausted(self, assignment: MatchingAssignment, now: datetime, reason: Optional[str]) -> bool:
        siblings = self.store.list_assignments_for_request(assignment.request_id)
        if any(s.status in (AssignmentStatus.PENDING, AssignmentStatus.ACCEPTED) for s in siblings):
            return False

        record = self.store.get_request(assignment.request_id)
        if record is not None and record.status == RequestStatus.CANCELLED:
            return False

        queued = self.enqueue_reassignment(
            assignment.request_id,
            assignment.assignment_type,
            original_driver_id=assignment.driver_id,
            rejection_reason=reason,
            priority=assignment.priority + 1,
            now=now,
        )
        return queued is not None

    # --- Reporting ---

    def get_matching_statistics(self, start: datetime, end: datetime) -> MatchingStatistics:
        return get_matching_statistics(self.store, start, end, sample_size=self.settings.statistics_sample_size)

    def _record_history(self, assignment_id: str, status: HistoryStatus, now: datetime, **fields):
        history = self.store.get_history(assignment_id)
        if history is None:
            logger.warning(f"No history row for assignment {assignment_id}")
            return None
        updated = history_outcome(history, status, now, **fields)
        self.store.save_history(updated)
        return updated
