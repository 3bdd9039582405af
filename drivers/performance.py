"""
Purpose: Weekly rollup of each driver's assignment history.
What it does:
Reads the audit rows for the current Monday-Sunday window and upserts one
DriverPerformanceMetrics row per driver. The scorer reads the latest row as its
completion-rate and response-time inputs.
Recomputing within the same week overwrites the same row, so repeated runs are idempotent.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from .models import DriverPerformanceMetrics

logger = logging.getLogger(__name__)


def week_window(now: datetime) -> Tuple[datetime, datetime]:
    """
    Monday 00:00:00 to Sunday 23:59:59.999999 of the week containing `now`.
    """
    monday = (now - timedelta(days=now.weekday())).date()
    start = datetime.combine(monday, time.min, tzinfo=now.tzinfo)
    end = datetime.combine(monday + timedelta(days=6), time.max, tzinfo=now.tzinfo)
    return start, end


class PerformanceAggregator:

    def __init__(self, store):
        self.store = store

    def update_driver_performance_metrics(
        self, driver_id: str, now: Optional[datetime] = None
    ) -> Optional[DriverPerformanceMetrics]:
        """
        Returns the upserted row, or None when the driver has no history this week.
        """
        from dispatch.models import HistoryStatus

        now = now or datetime.now(timezone.utc)
        week_start, week_end = week_window(now)
        rows = self.store.list_history(driver_id, week_start, week_end)
        if not rows:
            return None

        def count(*statuses) -> int:
            return sum(1 for row in rows if row.status in statuses)

        total = len(rows)
        completed = count(HistoryStatus.COMPLETED)
        # a completed offer was accepted first
        accepted = count(HistoryStatus.ACCEPTED, HistoryStatus.COMPLETED)
        response_times = [row.response_time for row in rows if row.response_time is not None]

        metrics = DriverPerformanceMetrics(
            driver_id=driver_id,
            period_start=week_start,
            period_end=week_end,
            total_assignments=total,
            accepted_assignments=accepted,
            rejected_assignments=count(HistoryStatus.REJECTED),
            expired_assignments=count(HistoryStatus.EXPIRED),
            completed_assignments=completed,
            acceptance_rate=accepted / total if total else 0.0,
            completion_rate=completed / accepted if accepted else 0.0,
            avg_response_time=sum(response_times) / len(response_times) if response_times else 0.0,
        )
        return self.store.upsert_performance_metrics(metrics)

    def update_all(self, driver_ids: Iterable[str], now: Optional[datetime] = None) -> List[DriverPerformanceMetrics]:
        """
        Periodic rollup over many drivers. A failure for one driver is logged and skipped.
        """
        updated = []
        for driver_id in driver_ids:
            try:
                metrics = self.update_driver_performance_metrics(driver_id, now=now)
            except Exception:
                logger.exception(f"Performance rollup failed for driver {driver_id}")
                continue
            if metrics is not None:
                updated.append(metrics)
        logger.info(f"Updated weekly performance metrics for {len(updated)} drivers")
        return updated
