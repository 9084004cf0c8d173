"""
Dispatch coordinator.

Single entry point the views, tasks and management commands use. It owns
one instance of each engine component, built from injected collaborators.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.module_loading import import_string

from common.utils import validate_coordinates
from jobs.models import MatchingRequest
from realtime import notifications as events
from .assignments import AssignmentManager
from .exceptions import ConflictError, JobValidationError
from .geofencing import GeofenceEngine, LocationUpdate
from .matching import MatchFinder
from .policy import DispatchPolicy, load_policy
from .reassignment import ReassignmentQueue
from .repository import DispatchRepository
from .scoring import CandidateScorer, DriverCandidate

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    """Result object for job operations."""
    success: bool
    job: Optional[MatchingRequest] = None
    message: str = ""
    extra: Optional[Dict[str, Any]] = None


class DispatchCoordinator:

    def __init__(self, repository, notifier, policy: DispatchPolicy):
        self.repository = repository
        self.notifier = notifier
        self.policy = policy

        self.scorer = CandidateScorer(policy)
        self.match_finder = MatchFinder(repository, self.scorer, policy)
        self.geofences = GeofenceEngine(repository, notifier, policy)
        self.assignments = AssignmentManager(repository, notifier, policy, self.geofences)
        self.reassignment = ReassignmentQueue(
            repository, notifier, policy, self.match_finder, self.assignments
        )
        self.assignments.on_exhausted = self._requeue

    # ===================== Jobs =====================

    def submit_job(self, customer, **fields) -> JobResult:
        """
        Create a job and start looking for a driver.

        Raises:
            JobValidationError: If the request fields are invalid
        """
        data = self._validate_job_fields(fields)
        job = self.repository.create_job(customer=customer, status="searching", **data)
        logger.info("Job %s (%s) submitted by user %s", job.id, job.kind, customer.id)

        candidates = self.match_finder.find_candidates(job)
        created = self.assignments.create_assignments(job, candidates) if candidates else []
        job.refresh_from_db()

        if created:
            self.notifier.notify_customer(job, events.LOOKING_FOR_DRIVER, "Notifying nearby drivers...")
            message = "Notifying nearby drivers..."
        else:
            self.reassignment.enqueue(job, error="No available drivers found")
            self.notifier.notify_customer(
                job, events.NO_DRIVERS_AVAILABLE, "No drivers found nearby. We will keep trying."
            )
            message = "No available drivers found nearby yet."

        return JobResult(
            success=True,
            job=job,
            message=message,
            extra={"driver_candidates": len(candidates), "assignment_ids": created},
        )

    def find_candidates(self, job, radius_km=None, limit=None) -> List[DriverCandidate]:
        return self.match_finder.find_candidates(job, radius_km=radius_km, limit=limit)

    def assign(self, job, candidates: List[DriverCandidate]) -> List[int]:
        return self.assignments.create_assignments(job, candidates)

    def respond(self, assignment_id: int, response: str, driver_id: int, reason: str = ""):
        return self.assignments.respond_to_assignment(assignment_id, response, driver_id, reason)

    def start_job(self, job_id: int, driver_id: int) -> JobResult:
        """Driver picked up the order / passenger; head to the destination."""
        with transaction.atomic():
            job = self.repository.get_job(job_id, lock=True)
            self._check_driver(job, driver_id)
            if job.status not in ("assigned", "driver_arrived"):
                raise ConflictError(f"Cannot start - job is {job.status}")

            job.status = "in_progress"
            job.started_at = timezone.now()
            job.save(update_fields=["status", "started_at"])

            self.geofences.deactivate_for_job(job, "pickup")
            self.geofences.create_geofence(job, "delivery")

        self.notifier.notify_customer(job, events.JOB_STARTED, "Your job is on its way.")
        return JobResult(success=True, job=job, message="Job started")

    def complete_job(self, job_id: int, driver_id: int) -> JobResult:
        """Driver confirms the drop-off. Orders end delivered, rides completed."""
        with transaction.atomic():
            job = self.repository.get_job(job_id, lock=True)
            self._check_driver(job, driver_id)
            if job.status not in MatchingRequest.ACTIVE_STATUSES:
                raise ConflictError(f"Cannot complete - job is {job.status}")

            job.status = "delivered" if job.kind == "order" else "completed"
            job.finished_at = timezone.now()
            job.save(update_fields=["status", "finished_at"])

            self.geofences.deactivate_for_job(job)

            driver = self.repository.get_driver(driver_id, lock=True)
            driver.status = "available"
            driver.total_jobs += 1
            driver.save(update_fields=["status", "total_jobs"])

            job.customer.completed_jobs += 1
            job.customer.save(update_fields=["completed_jobs"])

        self.repository.record_driver_response(driver_id)
        logger.info("Job %s %s by driver %s", job.id, job.status, driver_id)
        self.notifier.notify_customer(job, events.JOB_COMPLETED, "Your job has been completed. Thank you!")
        return JobResult(success=True, job=job, message=f"Job {job.status}")

    def cancel_job(self, job_id: int, reason: str = "No reason provided") -> JobResult:
        """
        Cancel a job at any point before it finishes.

        Cancels the pending offer, closes the geofences and the queue item, and
        frees the bound driver.
        """
        now = timezone.now()
        with transaction.atomic():
            job = self.repository.get_job(job_id, lock=True)
            if job.is_terminal:
                raise ConflictError(f"Cannot cancel - job is already {job.status}")

            had_driver = job.driver_id
            self.assignments.cancel_pending_for_job(job, now)
            self.geofences.deactivate_for_job(job)
            self.repository.resolve_queue_item(job.id, now)

            job.status = "cancelled"
            job.cancelled_at = now
            job.cancellation_reason = reason or ""
            job.save(update_fields=["status", "cancelled_at", "cancellation_reason"])

            if had_driver:
                self.repository.set_driver_status(had_driver, "available")

        if had_driver:
            self.repository.record_driver_response(had_driver)
            self.notifier.notify_driver(
                had_driver,
                events.JOB_CANCELLED,
                {"job_id": job.id, "message": "This job was cancelled.", "reason": job.cancellation_reason},
            )
        self.notifier.notify_customer(job, events.JOB_CANCELLED, "Job cancelled.")
        logger.info("Job %s cancelled (had driver: %s)", job.id, bool(had_driver))

        return JobResult(
            success=True,
            job=job,
            message="Job cancelled successfully",
            extra={"was_assigned": bool(had_driver)},
        )

    # ===================== Tracking =====================

    def record_location(self, update: LocationUpdate) -> List[Dict]:
        """
        Store a driver location report, then run geofence checks.

        Raises:
            JobValidationError: If the coordinates are unusable
        """
        try:
            validate_coordinates(update.latitude, update.longitude)
        except ValueError as exc:
            raise JobValidationError(str(exc))

        self.repository.save_location(update, self.policy.location_history_limit)
        return self.geofences.on_location_update(update)

    # ===================== Periodic work =====================

    def tick(self, now=None) -> Dict[str, Any]:
        """Expire overdue offers, then process due reassignment items."""
        now = now or timezone.now()
        expired = self.assignments.expire_due(now)
        reassignment = self.reassignment.process_due(now)
        return {"expired": expired, "reassignment": reassignment}

    # ===================== Helpers =====================

    def _requeue(self, job, error: str) -> None:
        self.reassignment.enqueue(job, error=error)

    def _check_driver(self, job, driver_id: int) -> None:
        if job.driver_id != driver_id:
            raise ConflictError("This job is not assigned to you")

    def _validate_job_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        kind = fields.get("kind")
        if kind not in dict(MatchingRequest.KIND_CHOICES):
            raise JobValidationError(f"Unknown job kind '{kind}'")

        service_type = fields.get("service_type") or ("rideshare" if kind == "ride" else "food_delivery")
        if service_type not in dict(MatchingRequest.SERVICE_CHOICES):
            raise JobValidationError(f"Unknown service type '{service_type}'")

        try:
            pickup = validate_coordinates(fields.get("pickup_latitude"), fields.get("pickup_longitude"))
        except ValueError as exc:
            raise JobValidationError(f"Invalid pickup location: {exc}")

        destination = None
        if fields.get("destination_latitude") is not None or fields.get("destination_longitude") is not None:
            try:
                destination = validate_coordinates(
                    fields.get("destination_latitude"), fields.get("destination_longitude")
                )
            except ValueError as exc:
                raise JobValidationError(f"Invalid destination: {exc}")
        if kind == "ride" and destination is None:
            raise JobValidationError("Rides need a destination")

        priority = _number(fields, "priority", int)
        if priority is None:
            priority = 5
        if not 1 <= priority <= 10:
            raise JobValidationError("Priority must be between 1 and 10")

        max_distance_km = _number(fields, "max_distance_km", float)
        if max_distance_km is not None and max_distance_km <= 0:
            raise JobValidationError("max_distance_km must be positive")

        min_rating = _number(fields, "min_rating", float)
        if min_rating is not None and not 0 <= min_rating <= 5:
            raise JobValidationError("min_rating must be between 0 and 5")

        estimated_value = _number(fields, "estimated_value", lambda v: Decimal(str(v)))

        return {
            "kind": kind,
            "service_type": service_type,
            "pickup_latitude": round(pickup[0], 6),
            "pickup_longitude": round(pickup[1], 6),
            "pickup_address": fields.get("pickup_address") or "",
            "destination_latitude": round(destination[0], 6) if destination else None,
            "destination_longitude": round(destination[1], 6) if destination else None,
            "destination_address": fields.get("destination_address") or "",
            "priority": priority,
            "max_distance_km": max_distance_km,
            "min_rating": min_rating,
            "vehicle_type": fields.get("vehicle_type") or "",
            "estimated_value": estimated_value,
        }


def _number(fields: Dict[str, Any], name: str, cast):
    value = fields.get(name)
    if value is None or value == "":
        return None
    try:
        return cast(value)
    except (TypeError, ValueError, InvalidOperation):
        raise JobValidationError(f"{name} must be a number")


def build_coordinator(notifier=None, policy: Optional[DispatchPolicy] = None) -> DispatchCoordinator:
    """Coordinator wired with the ORM repository and the configured notifier."""
    if notifier is None:
        notifier = import_string(settings.DISPATCH_NOTIFIER)()
    return DispatchCoordinator(
        repository=DispatchRepository(),
        notifier=notifier,
        policy=policy or load_policy(),
    )
