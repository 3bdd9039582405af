"""
Purpose: Persistence boundary of the matching engine.
What it does:
- MatchingStore lists every read/write the engine needs (drivers, requests, configs,
  assignments + history, performance metrics, reassignment queue).
- InMemoryMatchingStore is the in-process implementation (tests, simulation).
  backend/matching/store.py implements the same contract on the Django ORM.

Concurrency contract:
- compare_and_set_* only writes when the stored status still equals `expected`,
  and reports whether it won. This is what keeps two concurrent accepts from both succeeding.
- lock(request_id) serializes the multi-row accept/reject/cancel paths of a single request.
  Independent requests never share a lock.
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence

from dispatch.exceptions import StoreError
from dispatch.models import (
    AssignmentStatus,
    DriverAssignmentHistory,
    MatchingAssignment,
)
from drivers.models import DriverCandidate, DriverPerformanceMetrics
from drivers.policy import MatchingAlgorithmConfig
from orders.models import (
    QueueItemStatus,
    ReassignmentQueueItem,
    RequestRecord,
    RequestStatus,
)

ACTIVE_QUEUE_STATES = (QueueItemStatus.PENDING, QueueItemStatus.PROCESSING)


class MatchingStore(ABC):

    # --- Drivers ---

    @abstractmethod
    def save_driver(self, driver: DriverCandidate) -> None: ...

    @abstractmethod
    def get_driver(self, driver_id: str) -> Optional[DriverCandidate]: ...

    @abstractmethod
    def list_available_drivers(self) -> List[DriverCandidate]:
        """
        Drivers whose is_available flag is set, with their latest weekly metrics attached.
        Coarse index only: every hard filter is re-applied by drivers.selection.
        """

    @abstractmethod
    def get_latest_metrics(self, driver_id: str) -> Optional[DriverPerformanceMetrics]: ...

    @abstractmethod
    def upsert_performance_metrics(self, metrics: DriverPerformanceMetrics) -> DriverPerformanceMetrics: ...

    # --- Orders / rides ---

    @abstractmethod
    def save_request(self, record: RequestRecord) -> None: ...

    @abstractmethod
    def get_request(self, request_id: str) -> Optional[RequestRecord]: ...

    @abstractmethod
    def bind_driver(self, request_id: str, driver_id: str) -> None: ...

    @abstractmethod
    def set_request_status(self, request_id: str, status: RequestStatus) -> None: ...

    # --- Algorithm configs ---

    @abstractmethod
    def get_active_config(self) -> Optional[MatchingAlgorithmConfig]: ...

    @abstractmethod
    def save_config(self, config: MatchingAlgorithmConfig, activate: bool = False) -> MatchingAlgorithmConfig:
        """
        Persists a config (upsert by name). Activating it deactivates every other config.
        """

    @abstractmethod
    def list_configs(self, active_only: bool = False) -> List[MatchingAlgorithmConfig]: ...

    # --- Assignments + history ---

    @abstractmethod
    def create_assignments(
        self,
        assignments: Sequence[MatchingAssignment],
        histories: Sequence[DriverAssignmentHistory],
    ) -> None:
        """
        All-or-nothing: either every offer (and its history row) is persisted or none is.
        """

    @abstractmethod
    def get_assignment(self, assignment_id: str) -> Optional[MatchingAssignment]: ...

    @abstractmethod
    def list_assignments_for_request(
        self, request_id: str, status: Optional[AssignmentStatus] = None
    ) -> List[MatchingAssignment]: ...

    @abstractmethod
    def list_assignments_between(self, start: datetime, end: datetime) -> List[MatchingAssignment]:
        """
        Offers made within [start, end], most recent first.
        """

    @abstractmethod
    def list_overdue_assignments(self, now: datetime) -> List[MatchingAssignment]:
        """
        PENDING offers whose response_timeout is at or before `now`.
        """

    @abstractmethod
    def compare_and_set_assignment(self, updated: MatchingAssignment, expected: AssignmentStatus) -> bool: ...

    @abstractmethod
    def get_history(self, assignment_id: str) -> Optional[DriverAssignmentHistory]: ...

    @abstractmethod
    def save_history(self, history: DriverAssignmentHistory) -> None: ...

    @abstractmethod
    def list_history(self, driver_id: str, start: datetime, end: datetime) -> List[DriverAssignmentHistory]: ...

    # --- Reassignment queue ---

    @abstractmethod
    def enqueue_reassignment(self, item: ReassignmentQueueItem) -> ReassignmentQueueItem: ...

    @abstractmethod
    def get_reassignment_item(self, item_id: str) -> Optional[ReassignmentQueueItem]: ...

    @abstractmethod
    def list_reassignments_for_request(
        self, request_id: str, statuses: Sequence[QueueItemStatus] = ACTIVE_QUEUE_STATES
    ) -> List[ReassignmentQueueItem]: ...

    @abstractmethod
    def list_due_reassignments(self, now: datetime, limit: int) -> List[ReassignmentQueueItem]:
        """
        PENDING items whose available_at has passed, by priority desc then age asc.
        """

    @abstractmethod
    def compare_and_set_queue_item(self, updated: ReassignmentQueueItem, expected: QueueItemStatus) -> bool: ...

    @abstractmethod
    def queue_summary(self) -> Dict[str, int]: ...

    # --- Locking ---

    @abstractmethod
    def lock(self, request_id: str):
        """
        Context manager serializing state changes for a single request.
        """


class InMemoryMatchingStore(MatchingStore):
    """
    Thread-safe in-process store. Every read returns a copy so callers can never
    mutate stored state without going through a write method.
    """

    def __init__(self):
        self._mutex = threading.RLock()
        self._request_locks: Dict[str, _RequestLock] = {}

        self._drivers: Dict[str, DriverCandidate] = {}
        self._metrics: Dict[str, Dict[datetime, DriverPerformanceMetrics]] = defaultdict(dict)
        self._requests: Dict[str, RequestRecord] = {}
        self._configs: Dict[str, MatchingAlgorithmConfig] = {}
        self._assignments: Dict[str, MatchingAssignment] = {}
        self._history: Dict[str, DriverAssignmentHistory] = {}  # by assignment id
        self._queue: Dict[str, ReassignmentQueueItem] = {}

    # --- Drivers ---

    def save_driver(self, driver: DriverCandidate) -> None:
        with self._mutex:
            self._drivers[driver.id] = driver

    def get_driver(self, driver_id: str) -> Optional[DriverCandidate]:
        with self._mutex:
            return self._drivers.get(driver_id)

    def list_available_drivers(self) -> List[DriverCandidate]:
        with self._mutex:
            return [
                replace(driver, metrics=self.get_latest_metrics(driver.id) or driver.metrics)
                for driver in self._drivers.values()
                if driver.is_available
            ]

    def get_latest_metrics(self, driver_id: str) -> Optional[DriverPerformanceMetrics]:
        with self._mutex:
            periods = self._metrics.get(driver_id)
            if not periods:
                return None
            return periods[max(periods)]

    def upsert_performance_metrics(self, metrics: DriverPerformanceMetrics) -> DriverPerformanceMetrics:
        with self._mutex:
            self._metrics[metrics.driver_id][metrics.period_start] = metrics
            return metrics

    # --- Orders / rides ---

    def save_request(self, record: RequestRecord) -> None:
        with self._mutex:
            self._requests[record.id] = deepcopy(record)

    def get_request(self, request_id: str) -> Optional[RequestRecord]:
        with self._mutex:
            record = self._requests.get(request_id)
            return deepcopy(record) if record else None

    def bind_driver(self, request_id: str, driver_id: str) -> None:
        with self._mutex:
            record = self._requests.get(request_id)
            if record is None:
                return
            record.driver_id = driver_id
            record.status = RequestStatus.ASSIGNED

    def set_request_status(self, request_id: str, status: RequestStatus) -> None:
        with self._mutex:
            record = self._requests.get(request_id)
            if record is not None:
                record.status = status

    # --- Algorithm configs ---

    def get_active_config(self) -> Optional[MatchingAlgorithmConfig]:
        with self._mutex:
            for config in self._configs.values():
                if config.is_active:
                    return config
            return None

    def save_config(self, config: MatchingAlgorithmConfig, activate: bool = False) -> MatchingAlgorithmConfig:
        with self._mutex:
            existing = self._configs.get(config.name)
            config_id = config.id or (existing.id if existing else None) or str(uuid.uuid4())
            saved = replace(config, id=config_id, is_active=activate or config.is_active)
            if saved.is_active:
                for name, other in list(self._configs.items()):
                    if name != saved.name and other.is_active:
                        self._configs[name] = replace(other, is_active=False)
            self._configs[saved.name] = saved
            return saved

    def list_configs(self, active_only: bool = False) -> List[MatchingAlgorithmConfig]:
        with self._mutex:
            configs = [c for c in self._configs.values() if c.is_active or not active_only]
            # active first, insertion order otherwise
            return sorted(configs, key=lambda c: not c.is_active)

    # --- Assignments + history ---

    def create_assignments(
        self,
        assignments: Sequence[MatchingAssignment],
        histories: Sequence[DriverAssignmentHistory],
    ) -> None:
        with self._mutex:
            # validate the whole batch before touching state
            ids = [a.id for a in assignments]
            if len(set(ids)) != len(ids) or any(i in self._assignments for i in ids):
                raise StoreError("Duplicate assignment id in batch")
            known = set(ids)
            if any(h.assignment_id not in known for h in histories):
                raise StoreError("History row references an assignment outside the batch")

            for assignment in assignments:
                self._assignments[assignment.id] = deepcopy(assignment)
            for history in histories:
                self._history[history.assignment_id] = deepcopy(history)

    def get_assignment(self, assignment_id: str) -> Optional[MatchingAssignment]:
        with self._mutex:
            assignment = self._assignments.get(assignment_id)
            return deepcopy(assignment) if assignment else None

    def list_assignments_for_request(
        self, request_id: str, status: Optional[AssignmentStatus] = None
    ) -> List[MatchingAssignment]:
        with self._mutex:
            return [
                deepcopy(a)
                for a in self._assignments.values()
                if a.request_id == request_id and (status is None or a.status == status)
            ]

    def list_assignments_between(self, start: datetime, end: datetime) -> List[MatchingAssignment]:
        with self._mutex:
            found = [deepcopy(a) for a in self._assignments.values() if start <= a.offered_at <= end]
        found.sort(key=lambda a: a.offered_at, reverse=True)
        return found

    def list_overdue_assignments(self, now: datetime) -> List[MatchingAssignment]:
        with self._mutex:
            return [
                deepcopy(a)
                for a in self._assignments.values()
                if a.status == AssignmentStatus.PENDING and a.response_timeout <= now
            ]

    def compare_and_set_assignment(self, updated: MatchingAssignment, expected: AssignmentStatus) -> bool:
        with self._mutex:
            current = self._assignments.get(updated.id)
            if current is None or current.status != expected:
                return False
            self._assignments[updated.id] = deepcopy(updated)
            return True

    def get_history(self, assignment_id: str) -> Optional[DriverAssignmentHistory]:
        with self._mutex:
            history = self._history.get(assignment_id)
            return deepcopy(history) if history else None

    def save_history(self, history: DriverAssignmentHistory) -> None:
        with self._mutex:
            self._history[history.assignment_id] = deepcopy(history)

    def list_history(self, driver_id: str, start: datetime, end: datetime) -> List[DriverAssignmentHistory]:
        with self._mutex:
            return [
                deepcopy(h)
                for h in self._history.values()
                if h.driver_id == driver_id and start <= h.assigned_at <= end
            ]

    # --- Reassignment queue ---

    def enqueue_reassignment(self, item: ReassignmentQueueItem) -> ReassignmentQueueItem:
        with self._mutex:
            self._queue[item.id] = deepcopy(item)
            return item

    def get_reassignment_item(self, item_id: str) -> Optional[ReassignmentQueueItem]:
        with self._mutex:
            item = self._queue.get(item_id)
            return deepcopy(item) if item else None

    def list_reassignments_for_request(
        self, request_id: str, statuses: Sequence[QueueItemStatus] = ACTIVE_QUEUE_STATES
    ) -> List[ReassignmentQueueItem]:
        with self._mutex:
            return [
                deepcopy(item)
                for item in self._queue.values()
                if item.request_id == request_id and item.status in statuses
            ]

    def list_due_reassignments(self, now: datetime, limit: int) -> List[ReassignmentQueueItem]:
        with self._mutex:
            due = [
                deepcopy(item)
                for item in self._queue.values()
                if item.status == QueueItemStatus.PENDING
                and (item.available_at is None or item.available_at <= now)
            ]
        due.sort(key=lambda item: (-item.priority, item.created_at))
        return due[:limit]

    def compare_and_set_queue_item(self, updated: ReassignmentQueueItem, expected: QueueItemStatus) -> bool:
        with self._mutex:
            current = self._queue.get(updated.id)
            if current is None or current.status != expected:
                return False
            self._queue[updated.id] = deepcopy(updated)
            return True

    def queue_summary(self) -> Dict[str, int]:
        with self._mutex:
            summary = {status.value.lower(): 0 for status in QueueItemStatus}
            for item in self._queue.values():
                summary[item.status.value.lower()] += 1
            return summary

    # --- Locking ---

    @contextmanager
    def lock(self, request_id: str) -> Iterator[None]:
        with self._mutex:
            request_lock = self._request_locks.get(request_id)
            if request_lock is None:
                request_lock = self._request_locks[request_id] = _RequestLock()
            request_lock.holders += 1
        try:
            with request_lock.lock:
                yield
        finally:
            # drop the entry once nobody holds or waits on it
            with self._mutex:
                request_lock.holders -= 1
                if request_lock.holders == 0:
                    del self._request_locks[request_id]


class _RequestLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.RLock()
        self.holders = 0
