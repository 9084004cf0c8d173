"""
Persistence for the dispatch engine.

All ORM access the engine needs goes through DispatchRepository, so the
matching and assignment logic stays free of query details and can be fed a
different repository in tests.
"""

import logging
import math
from datetime import datetime
from typing import List, Optional

from django.db.models import Q
from django.utils import timezone

from drivers.models import DriverProfile
from drivers.services import refresh_driver_metrics, update_driver_location
from jobs.models import (
    Assignment,
    Geofence,
    MatchingRequest,
    RankedCandidate,
    ReassignmentQueueItem,
)
from .exceptions import NotFoundError
from .scoring import DriverCandidate, DriverSnapshot

logger = logging.getLogger(__name__)

KM_PER_DEGREE_LAT = 111.32


def _longitude_band(lon: float, delta: float) -> Q:
    """Longitude range around lon, split in two where it crosses the antimeridian."""
    if delta >= 180:
        return Q()
    west, east = lon - delta, lon + delta
    if west < -180:
        return Q(current_longitude__gte=west + 360) | Q(current_longitude__lte=east)
    if east > 180:
        return Q(current_longitude__gte=west) | Q(current_longitude__lte=east - 360)
    return Q(current_longitude__gte=west, current_longitude__lte=east)


class DispatchRepository:

    # ---------------------- Jobs ----------------------

    def create_job(self, **fields) -> MatchingRequest:
        return MatchingRequest.objects.create(**fields)

    def get_job(self, job_id: int, lock: bool = False) -> MatchingRequest:
        qs = MatchingRequest.objects.select_related("customer", "driver")
        if lock:
            # driver is a nullable join; lock only the job row
            qs = qs.select_for_update(of=("self",))
        try:
            return qs.get(pk=job_id)
        except MatchingRequest.DoesNotExist:
            raise NotFoundError(f"Job {job_id} not found")

    def update_job_status(self, job_id: int, from_statuses, **fields) -> bool:
        """Compare-and-set on the job status. True when the row changed."""
        return MatchingRequest.objects.filter(pk=job_id, status__in=from_statuses).update(**fields) == 1

    def active_job_for_driver(self, driver_id: int) -> Optional[MatchingRequest]:
        return (
            MatchingRequest.objects
            .filter(driver_id=driver_id, status__in=MatchingRequest.ACTIVE_STATUSES)
            .order_by("-assigned_at")
            .first()
        )

    # ---------------------- Drivers ----------------------

    def get_driver(self, driver_id: int, lock: bool = False) -> DriverProfile:
        qs = DriverProfile.objects.select_related("user")
        if lock:
            qs = qs.select_for_update(of=("self",))
        try:
            return qs.get(pk=driver_id)
        except DriverProfile.DoesNotExist:
            raise NotFoundError(f"Driver {driver_id} not found")

    def available_drivers_near(self, point, radius_km: float, fresh_since: datetime,
                               service_type: Optional[str] = None) -> List[DriverSnapshot]:
        """
        Available, verified drivers with a location newer than fresh_since,
        no active job and no pending offer, inside a bounding box around point.

        The box is a coarse prefilter; the exact haversine cut happens in scoring.
        """
        lat, lon = point
        lat_delta = radius_km / KM_PER_DEGREE_LAT
        cos_lat = max(math.cos(math.radians(lat)), 0.01)
        lon_delta = radius_km / (KM_PER_DEGREE_LAT * cos_lat)

        qs = (
            DriverProfile.objects
            .filter(
                status="available",
                is_verified=True,
                current_latitude__isnull=False,
                current_longitude__isnull=False,
                last_location_update__gte=fresh_since,
                current_latitude__gte=lat - lat_delta,
                current_latitude__lte=lat + lat_delta,
            )
            .filter(_longitude_band(lon, lon_delta))
            .exclude(jobs__status__in=MatchingRequest.ACTIVE_STATUSES)
            .exclude(assignments__status="pending")
            .distinct()
        )
        if service_type:
            qs = qs.filter(Q(service_type=service_type) | Q(service_type="both"))

        return [DriverSnapshot.from_profile(profile) for profile in qs]

    def driver_is_offerable(self, driver_id: int) -> bool:
        """Still available, verified, not on a job and not holding another offer."""
        return (
            DriverProfile.objects
            .filter(pk=driver_id, status="available", is_verified=True)
            .exclude(jobs__status__in=MatchingRequest.ACTIVE_STATUSES)
            .exclude(assignments__status="pending")
            .exists()
        )

    def set_driver_status(self, driver_id: int, status: str) -> None:
        DriverProfile.objects.filter(pk=driver_id).update(status=status)

    def record_driver_response(self, driver_id: int, response_time_seconds=None) -> None:
        refresh_driver_metrics(driver_id, response_time_seconds)

    def save_location(self, update, history_limit: int):
        profile = self.get_driver(update.driver_id)
        return update_driver_location(
            profile,
            update.latitude,
            update.longitude,
            heading_deg=update.heading_deg,
            speed_kmh=update.speed_kmh,
            job_id=update.active_job_id,
            recorded_at=update.timestamp,
            history_limit=history_limit,
        )

    # ---------------------- Ranked candidates ----------------------

    def save_ranked_candidates(self, job: MatchingRequest, matching_pass: int,
                               candidates: List[DriverCandidate]) -> List[RankedCandidate]:
        rows = [
            RankedCandidate(
                job=job,
                driver_id=candidate.driver_id,
                matching_pass=matching_pass,
                rank=rank,
                distance_km=candidate.distance_km,
                eta_minutes=candidate.eta_minutes,
                distance_score=candidate.scores["distance"],
                rating_score=candidate.scores["rating"],
                completion_rate_score=candidate.scores["completion_rate"],
                response_time_score=candidate.scores["response_time"],
                availability_score=candidate.scores["availability"],
                total_score=candidate.total_score,
            )
            for rank, candidate in enumerate(candidates)
        ]
        return RankedCandidate.objects.bulk_create(rows)

    def unoffered_candidates(self, job: MatchingRequest) -> List[RankedCandidate]:
        return list(
            RankedCandidate.objects
            .filter(job=job, matching_pass=job.matching_pass, offered_at__isnull=True, skipped=False)
            .order_by("rank")
        )

    def mark_candidate(self, candidate_id: int, **fields) -> None:
        RankedCandidate.objects.filter(pk=candidate_id).update(**fields)

    # ---------------------- Assignments ----------------------

    def get_assignment(self, assignment_id: int) -> Assignment:
        try:
            return Assignment.objects.select_related("job", "job__customer", "driver").get(pk=assignment_id)
        except Assignment.DoesNotExist:
            raise NotFoundError(f"Assignment {assignment_id} not found")

    def create_assignment(self, **fields) -> Assignment:
        return Assignment.objects.create(**fields)

    def transition_assignment(self, assignment_id: int, to_status: str,
                              from_status: str = "pending", **fields) -> bool:
        """
        Compare-and-set on the assignment status.

        Exactly one concurrent caller wins; every other caller sees False.
        """
        updated = (
            Assignment.objects
            .filter(pk=assignment_id, status=from_status)
            .update(status=to_status, **fields)
        )
        return updated == 1

    def declined_driver_ids(self, job_id: int) -> set:
        return set(
            Assignment.objects
            .filter(job_id=job_id, status="rejected")
            .values_list("driver_id", flat=True)
        )

    def pending_assignment_for_job(self, job_id: int) -> Optional[Assignment]:
        return Assignment.objects.filter(job_id=job_id, status="pending").first()

    def pending_assignment_for_driver(self, driver_id: int) -> Optional[Assignment]:
        return (
            Assignment.objects
            .select_related("job")
            .filter(driver_id=driver_id, status="pending")
            .first()
        )

    def due_pending_assignments(self, now: datetime) -> List[Assignment]:
        return list(
            Assignment.objects
            .select_related("job", "driver")
            .filter(status="pending", expires_at__lte=now)
            .order_by("expires_at", "id")
        )

    # ---------------------- Reassignment queue ----------------------

    def get_queue_item(self, job_id: int) -> Optional[ReassignmentQueueItem]:
        return ReassignmentQueueItem.objects.filter(job_id=job_id).first()

    def create_queue_item(self, **fields) -> ReassignmentQueueItem:
        return ReassignmentQueueItem.objects.create(**fields)

    @staticmethod
    def _claimable(now: datetime, stale_before: Optional[datetime]) -> Q:
        """Due pending items, plus processing items whose worker went quiet before stale_before."""
        condition = Q(status="pending", next_attempt_at__lte=now)
        if stale_before is not None:
            condition |= Q(status="processing", updated_at__lt=stale_before)
        return condition

    def due_queue_items(self, now: datetime, limit: int,
                        stale_before: Optional[datetime] = None) -> List[ReassignmentQueueItem]:
        return list(
            ReassignmentQueueItem.objects
            .select_related("job")
            .filter(self._claimable(now, stale_before))
            .order_by("-priority", "created_at", "id")[:limit]
        )

    def claim_queue_item(self, item_id: int, now: datetime,
                         stale_before: Optional[datetime] = None) -> bool:
        # update() skips auto_now, so the claim stamps updated_at itself
        updated = (
            ReassignmentQueueItem.objects
            .filter(self._claimable(now, stale_before), pk=item_id)
            .update(status="processing", updated_at=timezone.now())
        )
        return updated == 1

    def resolve_queue_item(self, job_id: int, now: datetime) -> bool:
        updated = (
            ReassignmentQueueItem.objects
            .filter(job_id=job_id, status__in=["pending", "processing"])
            .update(status="resolved", processed_at=now)
        )
        return updated > 0

    # ---------------------- Geofences ----------------------

    def create_geofence(self, **fields) -> Geofence:
        return Geofence.objects.create(**fields)

    def active_geofences(self, job_id: int, type: Optional[str] = None) -> List[Geofence]:
        qs = Geofence.objects.filter(job_id=job_id, is_active=True)
        if type:
            qs = qs.filter(type=type)
        return list(qs)

    def trigger_geofence(self, geofence_id: int, now: datetime) -> bool:
        """Flip an active fence off. True only for the single caller that flipped it."""
        updated = (
            Geofence.objects
            .filter(pk=geofence_id, is_active=True)
            .update(is_active=False, triggered_at=now)
        )
        return updated == 1

    def deactivate_geofences(self, job_id: int, type: Optional[str] = None) -> int:
        qs = Geofence.objects.filter(job_id=job_id, is_active=True)
        if type:
            qs = qs.filter(type=type)
        return qs.update(is_active=False)
