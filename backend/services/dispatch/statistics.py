"""Matching statistics and dispatch health reporting."""

import logging
import time
from datetime import timedelta
from typing import Any, Dict, Optional

from django.db import connection
from django.db.models import Avg, Count, Q
from django.utils import timezone

from drivers.models import DriverProfile
from jobs.models import Assignment, MatchingRequest, ReassignmentQueueItem

logger = logging.getLogger(__name__)

HEALTHY = "HEALTHY"
WARNING = "WARNING"
CRITICAL = "CRITICAL"


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def assignment_counts(since, driver_id: Optional[int] = None) -> Dict[str, Any]:
    qs = Assignment.objects.filter(created_at__gte=since)
    if driver_id is not None:
        qs = qs.filter(driver_id=driver_id)

    counts = qs.aggregate(
        total=Count("id"),
        pending=Count("id", filter=Q(status="pending")),
        accepted=Count("id", filter=Q(status="accepted")),
        rejected=Count("id", filter=Q(status="rejected")),
        expired=Count("id", filter=Q(status="expired")),
        cancelled=Count("id", filter=Q(status="cancelled")),
        avg_response_time_seconds=Avg("response_time_seconds"),
        avg_score=Avg("total_score"),
        avg_distance_km=Avg("distance_km"),
    )
    counts["acceptance_rate"] = _percent(counts["accepted"], counts["total"])
    return counts


def queue_counts() -> Dict[str, int]:
    rows = ReassignmentQueueItem.objects.values("status").annotate(count=Count("id"))
    counts = {status: 0 for status, _ in ReassignmentQueueItem.STATUS_CHOICES}
    for row in rows:
        counts[row["status"]] = row["count"]
    return counts


def matching_statistics(hours: int = 24, driver_id: Optional[int] = None, now=None) -> Dict[str, Any]:
    """
    Job and offer outcomes over the last `hours`.

    success_rate is the share of finished-matching jobs (not cancelled
    before a driver was found) that ended up with a driver.
    """
    now = now or timezone.now()
    since = now - timedelta(hours=hours)

    jobs = MatchingRequest.objects.filter(created_at__gte=since).aggregate(
        total=Count("id"),
        searching=Count("id", filter=Q(status="searching")),
        matched=Count("id", filter=Q(driver__isnull=False)),
        unmatched=Count("id", filter=Q(status="unmatched")),
        cancelled=Count("id", filter=Q(status="cancelled")),
        finished=Count("id", filter=Q(status__in=["delivered", "completed"])),
    )
    decided = jobs["matched"] + jobs["unmatched"]
    jobs["success_rate"] = _percent(jobs["matched"], decided)

    stats = {
        "time_range": {"start": since.isoformat(), "end": now.isoformat(), "hours": hours},
        "jobs": jobs,
        "assignments": assignment_counts(since),
        "reassignment_queue": queue_counts(),
    }

    if driver_id is not None:
        driver = DriverProfile.objects.filter(pk=driver_id).first()
        if driver is not None:
            stats["driver"] = {
                "id": driver.id,
                "rating": driver.rating,
                "acceptance_rate": driver.acceptance_rate,
                "completion_rate": driver.completion_rate,
                "total_jobs": driver.total_jobs,
                "assignments": assignment_counts(since, driver_id=driver.id),
            }
    return stats


def _database_latency_ms() -> float:
    start = time.perf_counter()
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()
    return round((time.perf_counter() - start) * 1000, 2)


def health_snapshot(now=None) -> Dict[str, Any]:
    """
    Queue depths, recent acceptance and a 0-100 health score.

    Score starts at 100 and loses points for a slow database, few
    available drivers, low acceptance and a backed-up or failing queue.
    """
    now = now or timezone.now()
    last_hour = now - timedelta(hours=1)

    db_latency_ms = _database_latency_ms()
    available_drivers = DriverProfile.objects.filter(status="available", is_verified=True).count()
    offers = assignment_counts(last_hour)
    queue = queue_counts()
    searching_jobs = MatchingRequest.objects.filter(status="searching").count()

    score = 100
    if db_latency_ms > 1000:
        score -= 20
    if available_drivers < 10:
        score -= 15
    if offers["acceptance_rate"] < 70:
        score -= 15
    if queue["pending"] > 10:
        score -= 10
    if queue["failed"] > 5:
        score -= 10

    if score >= 90:
        status = HEALTHY
    elif score >= 70:
        status = WARNING
    else:
        status = CRITICAL

    if status != HEALTHY:
        logger.info("Dispatch health %s (score %s)", status, score)

    return {
        "timestamp": now.isoformat(),
        "status": status,
        "score": score,
        "performance": {
            "db_latency_ms": db_latency_ms,
            "avg_response_time_seconds": offers["avg_response_time_seconds"],
            "acceptance_rate": offers["acceptance_rate"],
        },
        "drivers": {
            "total": DriverProfile.objects.count(),
            "available": available_drivers,
            "busy": DriverProfile.objects.filter(status="busy").count(),
        },
        "jobs": {"searching": searching_jobs},
        "assignments": offers,
        "reassignment_queue": queue,
    }
