from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from dispatch.models import (
    AssignmentStatus,
    DriverAssignmentHistory,
    HistoryStatus,
    MatchingAssignment,
)


class AssignmentStateException(Exception):
    """Raised when an invalid assignment transition is attempted."""
    pass


# Only PENDING offers move; every other state is final.
ALLOWED_TRANSITIONS: Dict[AssignmentStatus, FrozenSet[AssignmentStatus]] = {
    AssignmentStatus.PENDING: frozenset({
        AssignmentStatus.ACCEPTED,
        AssignmentStatus.REJECTED,
        AssignmentStatus.EXPIRED,
        AssignmentStatus.CANCELLED,
    }),
}


def can_transition(current: AssignmentStatus, target: AssignmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _require(assignment: MatchingAssignment, target: AssignmentStatus) -> None:
    if not can_transition(assignment.status, target):
        raise AssignmentStateException(
            f"Cannot transition assignment {assignment.id} to {target.value} from {assignment.status.value}"
        )


def accept_assignment(assignment: MatchingAssignment, now: datetime, response_time: int) -> MatchingAssignment:
    """
    Driver tapped "Accept" before the timeout.
    Returns a new instance; the caller commits it with a compare-and-set on PENDING.
    """
    _require(assignment, AssignmentStatus.ACCEPTED)
    return replace(
        assignment,
        status=AssignmentStatus.ACCEPTED,
        responded_at=now,
        accepted_at=now,
        response_time=response_time,
        successful=True,
    )


def reject_assignment(
    assignment: MatchingAssignment,
    now: datetime,
    response_time: int,
    reason: Optional[str] = None,
) -> MatchingAssignment:
    _require(assignment, AssignmentStatus.REJECTED)
    return replace(
        assignment,
        status=AssignmentStatus.REJECTED,
        responded_at=now,
        rejected_at=now,
        response_time=response_time,
        rejection_reason=reason,
    )


def expire_assignment(assignment: MatchingAssignment, now: datetime) -> MatchingAssignment:
    _require(assignment, AssignmentStatus.EXPIRED)
    return replace(assignment, status=AssignmentStatus.EXPIRED, expired_at=now)


def cancel_assignment(assignment: MatchingAssignment, now: datetime) -> MatchingAssignment:
    """
    A sibling offer won, or the underlying order/ride was cancelled upstream.
    """
    _require(assignment, AssignmentStatus.CANCELLED)
    return replace(assignment, status=AssignmentStatus.CANCELLED, cancelled_at=now)


def history_outcome(
    history: DriverAssignmentHistory,
    status: HistoryStatus,
    now: datetime,
    *,
    response_time: Optional[int] = None,
    rejection_reason: Optional[str] = None,
) -> DriverAssignmentHistory:
    """
    Appends the terminal outcome to an audit row, once.
    The only later append allowed is ACCEPTED -> COMPLETED.
    """
    if status == HistoryStatus.COMPLETED:
        if history.status != HistoryStatus.ACCEPTED:
            raise AssignmentStateException(
                f"History {history.id} can only complete after ACCEPTED, not {history.status.value}"
            )
        return replace(history, status=HistoryStatus.COMPLETED, completed_at=now)

    if history.status != HistoryStatus.PENDING:
        raise AssignmentStateException(
            f"History {history.id} already recorded {history.status.value}"
        )

    changes = {"status": status}
    if response_time is not None:
        changes["response_time"] = response_time
    if status == HistoryStatus.ACCEPTED:
        changes["accepted_at"] = now
    elif status == HistoryStatus.REJECTED:
        changes["rejected_at"] = now
        changes["rejection_reason"] = rejection_reason
    return replace(history, **changes)
