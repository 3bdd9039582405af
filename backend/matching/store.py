"""
Purpose: MatchingStore on the Django ORM.
What it does:
Maps the engine's dataclasses to the rows in matching.models and back.

- Status changes are compare-and-set: a filtered UPDATE (pk + expected status) that
  reports whether exactly one row changed. A second accept on the same offer updates 0 rows.
- lock(request_id) opens a transaction and takes a row lock (SELECT ... FOR UPDATE) on
  the request, so multi-row accept/reject/cancel paths of one request are serialized
  while other requests proceed in parallel.
- create_assignments writes every offer and history row inside one transaction.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence

from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from dispatch.models import (
    AssignmentStatus,
    DriverAssignmentHistory,
    HistoryStatus,
    MatchingAssignment,
)
from dispatch.exceptions import StoreError
from dispatch.store import ACTIVE_QUEUE_STATES, MatchingStore
from drivers.models import (
    BatteryStatus,
    ConnectionType,
    ConnectivityStatus,
    DriverAvailabilityStatus,
    DriverCandidate,
    DriverMatchingPreferences,
    DriverPerformanceMetrics,
    ServiceType,
    VehicleType,
    VerificationStatus,
)
from drivers.policy import AlgorithmType, MatchingAlgorithmConfig
from orders.models import (
    Location,
    QueueItemStatus,
    ReassignmentQueueItem,
    RequestRecord,
    RequestStatus,
    RequestType,
)
from .models import (
    AlgorithmConfig,
    Assignment,
    AssignmentHistory,
    Driver,
    DriverAvailabilityLog,
    DriverWeeklyPerformance,
    MatchRequest,
    ReassignmentItem,
)


# --- Row <-> dataclass mapping ---

def _driver_from_row(row: Driver, metrics: Optional[DriverPerformanceMetrics] = None) -> DriverCandidate:
    location = (row.lat, row.lng) if row.lat is not None and row.lng is not None else None

    battery = None
    if row.battery_level is not None:
        battery = BatteryStatus(
            battery_level=row.battery_level,
            low_battery=row.low_battery,
            critical_battery=row.critical_battery,
            is_charging=row.is_charging,
            reported_at=row.battery_reported_at,
        )

    connectivity = None
    if row.is_connected is not None:
        connectivity = ConnectivityStatus(
            is_connected=row.is_connected,
            signal_strength=row.signal_strength,
            connection_type=ConnectionType(row.connection_type),
            reported_at=row.connectivity_reported_at,
        )

    preferences = None
    if row.has_preferences:
        preferences = DriverMatchingPreferences(
            max_distance_km=row.preferred_max_distance_km,
            min_order_value=row.min_order_value,
            max_order_value=row.max_order_value,
        )

    return DriverCandidate(
        id=row.driver_id,
        location=location,
        vehicle_type=VehicleType(row.vehicle_type),
        rating=row.rating,
        total_deliveries=row.total_deliveries,
        total_rides=row.total_rides,
        is_available=row.is_available,
        verification_status=VerificationStatus(row.verification_status),
        service_types=frozenset(ServiceType(s) for s in row.service_types),
        availability_status=DriverAvailabilityStatus(row.availability_status) if row.availability_status else None,
        availability_since=row.availability_since,
        battery=battery,
        connectivity=connectivity,
        metrics=metrics,
        preferences=preferences,
        name=row.name,
    )


def _driver_fields(driver: DriverCandidate) -> dict:
    lat, lng = driver.location if driver.location is not None else (None, None)
    battery = driver.battery
    connectivity = driver.connectivity
    preferences = driver.preferences

    return {
        "name": driver.name,
        "vehicle_type": driver.vehicle_type.value,
        "rating": driver.rating,
        "total_deliveries": driver.total_deliveries,
        "total_rides": driver.total_rides,
        "is_available": driver.is_available,
        "verification_status": driver.verification_status.value,
        "service_types": sorted(s.value for s in driver.service_types),
        "lat": lat,
        "lng": lng,
        "availability_status": driver.availability_status.value if driver.availability_status else None,
        "availability_since": driver.availability_since,
        "battery_level": battery.battery_level if battery else None,
        "low_battery": battery.low_battery if battery else False,
        "critical_battery": battery.critical_battery if battery else False,
        "is_charging": battery.is_charging if battery else False,
        "battery_reported_at": battery.reported_at if battery else None,
        "is_connected": connectivity.is_connected if connectivity else None,
        "signal_strength": connectivity.signal_strength if connectivity else 0,
        "connection_type": connectivity.connection_type.value if connectivity else ConnectionType.UNKNOWN.value,
        "connectivity_reported_at": connectivity.reported_at if connectivity else None,
        "has_preferences": preferences is not None,
        "preferred_max_distance_km": preferences.max_distance_km if preferences else None,
        "min_order_value": preferences.min_order_value if preferences else None,
        "max_order_value": preferences.max_order_value if preferences else None,
    }


def _metrics_from_row(row: DriverWeeklyPerformance) -> DriverPerformanceMetrics:
    return DriverPerformanceMetrics(
        driver_id=row.driver_id,
        period_start=row.period_start,
        period_end=row.period_end,
        period=row.period,
        total_assignments=row.total_assignments,
        accepted_assignments=row.accepted_assignments,
        rejected_assignments=row.rejected_assignments,
        expired_assignments=row.expired_assignments,
        completed_assignments=row.completed_assignments,
        acceptance_rate=row.acceptance_rate,
        completion_rate=row.completion_rate,
        avg_response_time=row.avg_response_time,
    )


def _request_from_row(row: MatchRequest) -> RequestRecord:
    destination = None
    if row.has_destination:
        destination = Location(row.destination_lat, row.destination_lng, row.destination_address)

    return RequestRecord(
        id=row.request_id,
        request_type=RequestType(row.request_type),
        pickup=Location(row.pickup_lat, row.pickup_lng, row.pickup_address),
        service_type=ServiceType(row.service_type),
        destination=destination,
        estimated_value=row.estimated_value,
        priority=row.priority,
        driver_id=row.driver_id,
        status=RequestStatus(row.status),
        created_at=row.created_at,
    )


def _config_from_row(row: AlgorithmConfig) -> MatchingAlgorithmConfig:
    return MatchingAlgorithmConfig(
        name=row.name,
        algorithm_type=AlgorithmType(row.algorithm_type),
        version=row.version,
        is_active=row.is_active,
        id=str(row.pk),
        distance_weight=row.distance_weight,
        rating_weight=row.rating_weight,
        completion_rate_weight=row.completion_rate_weight,
        response_time_weight=row.response_time_weight,
        availability_weight=row.availability_weight,
        max_distance=row.max_distance,
        min_rating=row.min_rating,
        min_completion_rate=row.min_completion_rate,
        max_response_time=row.max_response_time,
        max_assignments=row.max_assignments,
        assignment_timeout=row.assignment_timeout,
        reassignment_delay=row.reassignment_delay,
        enable_surge_matching=row.enable_surge_matching,
        enable_batch_matching=row.enable_batch_matching,
        enable_predictive_matching=row.enable_predictive_matching,
        created_at=row.created_at,
    )


def _assignment_from_row(row: Assignment) -> MatchingAssignment:
    driver_location = None
    if row.driver_lat is not None and row.driver_lng is not None:
        driver_location = (row.driver_lat, row.driver_lng)

    return MatchingAssignment(
        id=row.id,
        driver_id=row.driver_id,
        request_id=row.request_id,
        assignment_type=RequestType(row.assignment_type),
        response_timeout=row.response_timeout,
        config_version=row.config_version,
        config_id=row.config_id,
        status=AssignmentStatus(row.status),
        priority=row.priority,
        total_score=row.total_score,
        distance_score=row.distance_score,
        rating_score=row.rating_score,
        completion_rate_score=row.completion_rate_score,
        response_time_score=row.response_time_score,
        availability_score=row.availability_score,
        distance=row.distance,
        eta=row.eta,
        driver_location=driver_location,
        offered_at=row.offered_at,
        responded_at=row.responded_at,
        accepted_at=row.accepted_at,
        rejected_at=row.rejected_at,
        expired_at=row.expired_at,
        cancelled_at=row.cancelled_at,
        response_time=row.response_time,
        rejection_reason=row.rejection_reason,
        successful=row.successful,
    )


def _assignment_fields(assignment: MatchingAssignment) -> dict:
    lat, lng = assignment.driver_location if assignment.driver_location else (None, None)
    return {
        "request_id": assignment.request_id,
        "assignment_type": assignment.assignment_type.value,
        "driver_id": assignment.driver_id,
        "config_id": assignment.config_id,
        "config_version": assignment.config_version,
        "status": assignment.status.value,
        "priority": assignment.priority,
        "total_score": assignment.total_score,
        "distance_score": assignment.distance_score,
        "rating_score": assignment.rating_score,
        "completion_rate_score": assignment.completion_rate_score,
        "response_time_score": assignment.response_time_score,
        "availability_score": assignment.availability_score,
        "distance": assignment.distance,
        "eta": assignment.eta,
        "driver_lat": lat,
        "driver_lng": lng,
        "offered_at": assignment.offered_at,
        "response_timeout": assignment.response_timeout,
        "responded_at": assignment.responded_at,
        "accepted_at": assignment.accepted_at,
        "rejected_at": assignment.rejected_at,
        "expired_at": assignment.expired_at,
        "cancelled_at": assignment.cancelled_at,
        "response_time": assignment.response_time,
        "rejection_reason": assignment.rejection_reason,
        "successful": assignment.successful,
    }


def _history_from_row(row: AssignmentHistory) -> DriverAssignmentHistory:
    return DriverAssignmentHistory(
        id=row.id,
        assignment_id=row.assignment_id,
        driver_id=row.driver_id,
        request_id=row.request_id,
        assignment_type=RequestType(row.assignment_type),
        status=HistoryStatus(row.status),
        priority=row.priority,
        distance=row.distance,
        eta=row.eta,
        matching_score=row.matching_score,
        algorithm_version=row.algorithm_version,
        factors=dict(row.factors),
        assigned_at=row.assigned_at,
        response_time=row.response_time,
        accepted_at=row.accepted_at,
        rejected_at=row.rejected_at,
        completed_at=row.completed_at,
        rejection_reason=row.rejection_reason,
    )


def _history_fields(history: DriverAssignmentHistory) -> dict:
    return {
        "assignment_id": history.assignment_id,
        "driver_id": history.driver_id,
        "request_id": history.request_id,
        "assignment_type": history.assignment_type.value,
        "status": history.status.value,
        "priority": history.priority,
        "distance": history.distance,
        "eta": history.eta,
        "matching_score": history.matching_score,
        "algorithm_version": history.algorithm_version,
        "factors": dict(history.factors),
        "assigned_at": history.assigned_at,
        "response_time": history.response_time,
        "accepted_at": history.accepted_at,
        "rejected_at": history.rejected_at,
        "completed_at": history.completed_at,
        "rejection_reason": history.rejection_reason,
    }


def _queue_item_from_row(row: ReassignmentItem) -> ReassignmentQueueItem:
    return ReassignmentQueueItem(
        id=row.id,
        request_id=row.request_id,
        request_type=RequestType(row.request_type),
        original_driver_id=row.original_driver_id,
        rejection_reason=row.rejection_reason,
        attempt=row.attempt,
        max_attempts=row.max_attempts,
        priority=row.priority,
        status=QueueItemStatus(row.status),
        created_at=row.created_at,
        available_at=row.available_at,
        processed_at=row.processed_at,
        completed_at=row.completed_at,
        assignment_ids=list(row.assignment_ids),
    )


def _queue_item_fields(item: ReassignmentQueueItem) -> dict:
    return {
        "request_id": item.request_id,
        "request_type": item.request_type.value,
        "original_driver_id": item.original_driver_id,
        "rejection_reason": item.rejection_reason,
        "attempt": item.attempt,
        "max_attempts": item.max_attempts,
        "priority": item.priority,
        "status": item.status.value,
        "created_at": item.created_at,
        "available_at": item.available_at,
        "processed_at": item.processed_at,
        "completed_at": item.completed_at,
        "assignment_ids": list(item.assignment_ids),
    }


class DjangoMatchingStore(MatchingStore):

    # --- Drivers ---

    def save_driver(self, driver: DriverCandidate) -> None:
        fields = _driver_fields(driver)
        with transaction.atomic():
            previous = Driver.objects.select_for_update().filter(driver_id=driver.id).first()
            row, _ = Driver.objects.update_or_create(driver_id=driver.id, defaults=fields)

            new_status = fields["availability_status"]
            if new_status and (previous is None or previous.availability_status != new_status):
                started = driver.availability_since or timezone.now()
                DriverAvailabilityLog.objects.filter(driver=row, end_time__isnull=True).update(end_time=started)
                DriverAvailabilityLog.objects.create(driver=row, status=new_status, start_time=started)

    def get_driver(self, driver_id: str) -> Optional[DriverCandidate]:
        row = Driver.objects.filter(driver_id=driver_id).first()
        if row is None:
            return None
        return _driver_from_row(row, self.get_latest_metrics(driver_id))

    def list_available_drivers(self) -> List[DriverCandidate]:
        rows = list(Driver.objects.filter(is_available=True).order_by("driver_id"))

        latest: Dict[str, DriverPerformanceMetrics] = {}
        metrics_rows = DriverWeeklyPerformance.objects.filter(
            driver_id__in=[row.driver_id for row in rows]
        ).order_by("driver_id", "-period_start")
        for metrics_row in metrics_rows:
            latest.setdefault(metrics_row.driver_id, _metrics_from_row(metrics_row))

        return [_driver_from_row(row, latest.get(row.driver_id)) for row in rows]

    def get_latest_metrics(self, driver_id: str) -> Optional[DriverPerformanceMetrics]:
        row = DriverWeeklyPerformance.objects.filter(driver_id=driver_id).order_by("-period_start").first()
        return _metrics_from_row(row) if row else None

    def upsert_performance_metrics(self, metrics: DriverPerformanceMetrics) -> DriverPerformanceMetrics:
        row, _ = DriverWeeklyPerformance.objects.update_or_create(
            driver_id=metrics.driver_id,
            period=metrics.period,
            period_start=metrics.period_start,
            defaults={
                "period_end": metrics.period_end,
                "total_assignments": metrics.total_assignments,
                "accepted_assignments": metrics.accepted_assignments,
                "rejected_assignments": metrics.rejected_assignments,
                "expired_assignments": metrics.expired_assignments,
                "completed_assignments": metrics.completed_assignments,
                "acceptance_rate": metrics.acceptance_rate,
                "completion_rate": metrics.completion_rate,
                "avg_response_time": metrics.avg_response_time,
            },
        )
        return _metrics_from_row(row)

    # --- Orders / rides ---

    def save_request(self, record: RequestRecord) -> None:
        destination = record.destination
        MatchRequest.objects.update_or_create(
            request_id=record.id,
            defaults={
                "request_type": record.request_type.value,
                "service_type": record.service_type.value,
                "pickup_lat": record.pickup.latitude,
                "pickup_lng": record.pickup.longitude,
                "pickup_address": record.pickup.address,
                "has_destination": destination is not None,
                "destination_lat": destination.latitude if destination else None,
                "destination_lng": destination.longitude if destination else None,
                "destination_address": destination.address if destination else None,
                "estimated_value": record.estimated_value,
                "priority": record.priority,
                "driver_id": record.driver_id,
                "status": record.status.value,
                "created_at": record.created_at,
            },
        )

    def get_request(self, request_id: str) -> Optional[RequestRecord]:
        row = MatchRequest.objects.filter(request_id=request_id).first()
        return _request_from_row(row) if row else None

    def bind_driver(self, request_id: str, driver_id: str) -> None:
        MatchRequest.objects.filter(request_id=request_id).update(
            driver_id=driver_id, status=RequestStatus.ASSIGNED.value
        )

    def set_request_status(self, request_id: str, status: RequestStatus) -> None:
        MatchRequest.objects.filter(request_id=request_id).update(status=status.value)

    # --- Algorithm configs ---

    def get_active_config(self) -> Optional[MatchingAlgorithmConfig]:
        row = AlgorithmConfig.objects.filter(is_active=True).order_by("-created_at").first()
        return _config_from_row(row) if row else None

    def save_config(self, config: MatchingAlgorithmConfig, activate: bool = False) -> MatchingAlgorithmConfig:
        is_active = activate or config.is_active
        with transaction.atomic():
            if is_active:
                AlgorithmConfig.objects.filter(is_active=True).exclude(name=config.name).update(is_active=False)
            row, _ = AlgorithmConfig.objects.update_or_create(
                name=config.name,
                defaults={
                    "algorithm_type": config.algorithm_type.value,
                    "version": config.version,
                    "is_active": is_active,
                    "distance_weight": config.distance_weight,
                    "rating_weight": config.rating_weight,
                    "completion_rate_weight": config.completion_rate_weight,
                    "response_time_weight": config.response_time_weight,
                    "availability_weight": config.availability_weight,
                    "max_distance": config.max_distance,
                    "min_rating": config.min_rating,
                    "min_completion_rate": config.min_completion_rate,
                    "max_response_time": config.max_response_time,
                    "max_assignments": config.max_assignments,
                    "assignment_timeout": config.assignment_timeout,
                    "reassignment_delay": config.reassignment_delay,
                    "enable_surge_matching": config.enable_surge_matching,
                    "enable_batch_matching": config.enable_batch_matching,
                    "enable_predictive_matching": config.enable_predictive_matching,
                    "created_at": config.created_at or timezone.now(),
                },
            )
        return _config_from_row(row)

    def list_configs(self, active_only: bool = False) -> List[MatchingAlgorithmConfig]:
        rows = AlgorithmConfig.objects.all()
        if active_only:
            rows = rows.filter(is_active=True)
        return [_config_from_row(row) for row in rows.order_by("-is_active", "-created_at")]

    # --- Assignments + history ---

    def create_assignments(
        self,
        assignments: Sequence[MatchingAssignment],
        histories: Sequence[DriverAssignmentHistory],
    ) -> None:
        try:
            with transaction.atomic():
                Assignment.objects.bulk_create(
                    [Assignment(id=a.id, **_assignment_fields(a)) for a in assignments]
                )
                AssignmentHistory.objects.bulk_create(
                    [AssignmentHistory(id=h.id, **_history_fields(h)) for h in histories]
                )
        except IntegrityError as e:
            raise StoreError(f"Could not persist offer batch: {e}") from e

    def get_assignment(self, assignment_id: str) -> Optional[MatchingAssignment]:
        row = Assignment.objects.filter(id=assignment_id).first()
        return _assignment_from_row(row) if row else None

    def list_assignments_for_request(
        self, request_id: str, status: Optional[AssignmentStatus] = None
    ) -> List[MatchingAssignment]:
        rows = Assignment.objects.filter(request_id=request_id)
        if status is not None:
            rows = rows.filter(status=status.value)
        return [_assignment_from_row(row) for row in rows.order_by("-priority")]

    def list_assignments_between(self, start: datetime, end: datetime) -> List[MatchingAssignment]:
        rows = Assignment.objects.filter(offered_at__gte=start, offered_at__lte=end).order_by("-offered_at")
        return [_assignment_from_row(row) for row in rows]

    def list_overdue_assignments(self, now: datetime) -> List[MatchingAssignment]:
        rows = Assignment.objects.filter(status=AssignmentStatus.PENDING.value, response_timeout__lte=now)
        return [_assignment_from_row(row) for row in rows]

    def compare_and_set_assignment(self, updated: MatchingAssignment, expected: AssignmentStatus) -> bool:
        changed = Assignment.objects.filter(id=updated.id, status=expected.value).update(
            **_assignment_fields(updated)
        )
        return changed == 1

    def get_history(self, assignment_id: str) -> Optional[DriverAssignmentHistory]:
        row = AssignmentHistory.objects.filter(assignment_id=assignment_id).first()
        return _history_from_row(row) if row else None

    def save_history(self, history: DriverAssignmentHistory) -> None:
        AssignmentHistory.objects.update_or_create(id=history.id, defaults=_history_fields(history))

    def list_history(self, driver_id: str, start: datetime, end: datetime) -> List[DriverAssignmentHistory]:
        rows = AssignmentHistory.objects.filter(
            driver_id=driver_id, assigned_at__gte=start, assigned_at__lte=end
        ).order_by("assigned_at")
        return [_history_from_row(row) for row in rows]

    # --- Reassignment queue ---

    def enqueue_reassignment(self, item: ReassignmentQueueItem) -> ReassignmentQueueItem:
        ReassignmentItem.objects.create(id=item.id, **_queue_item_fields(item))
        return item

    def get_reassignment_item(self, item_id: str) -> Optional[ReassignmentQueueItem]:
        row = ReassignmentItem.objects.filter(id=item_id).first()
        return _queue_item_from_row(row) if row else None

    def list_reassignments_for_request(
        self, request_id: str, statuses: Sequence[QueueItemStatus] = ACTIVE_QUEUE_STATES
    ) -> List[ReassignmentQueueItem]:
        rows = ReassignmentItem.objects.filter(
            request_id=request_id, status__in=[s.value for s in statuses]
        ).order_by("created_at")
        return [_queue_item_from_row(row) for row in rows]

    def list_due_reassignments(self, now: datetime, limit: int) -> List[ReassignmentQueueItem]:
        rows = (
            ReassignmentItem.objects.filter(status=QueueItemStatus.PENDING.value)
            .filter(Q(available_at__isnull=True) | Q(available_at__lte=now))
            .order_by("-priority", "created_at")[:limit]
        )
        return [_queue_item_from_row(row) for row in rows]

    def compare_and_set_queue_item(self, updated: ReassignmentQueueItem, expected: QueueItemStatus) -> bool:
        changed = ReassignmentItem.objects.filter(id=updated.id, status=expected.value).update(
            **_queue_item_fields(updated)
        )
        return changed == 1

    def queue_summary(self) -> Dict[str, int]:
        summary = {status.value.lower(): 0 for status in QueueItemStatus}
        for row in ReassignmentItem.objects.values("status").annotate(count=Count("id")):
            summary[row["status"].lower()] = row["count"]
        return summary

    # --- Locking ---

    @contextmanager
    def lock(self, request_id: str) -> Iterator[None]:
        with transaction.atomic():
            list(MatchRequest.objects.select_for_update().filter(request_id=request_id))
            yield
