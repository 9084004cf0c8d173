"""
Offer lifecycle for jobs.

Offers follow the daisy-chain pattern:
1. The ranked candidate list of a matching pass is stored with the job
2. The best candidate still free gets a pending Assignment (the offer)
3. Accept binds the driver; reject or expiry moves on to the next candidate
4. When the list is exhausted the job is handed to the reassignment queue

Every status change is a compare-and-set UPDATE on status='pending', so
accept, reject, expiry and cancellation racing on the same offer resolve to
exactly one winner.
"""

import logging
from datetime import timedelta
from typing import Callable, List, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from jobs.tasks import expire_assignment_task
from realtime import notifications as events
from realtime.notifications import job_payload
from .exceptions import (
    AlreadyResolvedError,
    ConflictError,
    DispatchError,
    JobValidationError,
    NoCandidatesError,
    UnauthorizedResponseError,
)
from .policy import DispatchPolicy
from .scoring import DriverCandidate

logger = logging.getLogger(__name__)

RESPONSES = ("accept", "reject")


class AssignmentManager:

    def __init__(self, repository, notifier, policy: DispatchPolicy, geofences,
                 on_exhausted: Optional[Callable] = None):
        self.repository = repository
        self.notifier = notifier
        self.policy = policy
        self.geofences = geofences
        # Called as on_exhausted(job, error) once no candidate is left.
        self.on_exhausted = on_exhausted

    # ---------------------- Creating offers ----------------------

    def create_assignments(self, job, candidates: List[DriverCandidate], now=None) -> List[int]:
        """
        Start a new matching pass for `job` from a ranked candidate list.

        Stores the ranked list and creates the first offer in one transaction.

        Returns:
            Ids of the assignments created (empty if every candidate became unavailable)

        Raises:
            NoCandidatesError: If candidates is empty
            ConflictError: If the job is not searching or already has a pending offer
        """
        if not candidates:
            raise NoCandidatesError(f"No candidates to assign for job {job.id}")
        now = now or timezone.now()

        with transaction.atomic():
            job = self.repository.get_job(job.id, lock=True)
            if job.status != "searching":
                raise ConflictError(f"Job {job.id} is {job.status}, not searching")
            if self.repository.pending_assignment_for_job(job.id):
                raise ConflictError(f"Job {job.id} already has a pending offer")

            job.matching_pass += 1
            job.save(update_fields=["matching_pass"])
            self.repository.save_ranked_candidates(job, job.matching_pass, candidates)
            assignment = self._offer_next_locked(job, now)

        logger.info(
            "Job %s matching pass %s: %d candidates ranked, first offer %s",
            job.id, job.matching_pass, len(candidates), assignment.id if assignment else None
        )
        if assignment is None:
            return []

        self._announce_offer(job, assignment)
        return [assignment.id]

    def offer_next(self, job, now=None):
        """
        Offer the job to the next ranked candidate that is still free.

        Returns:
            The new pending Assignment, or None when nothing was offered
        """
        now = now or timezone.now()
        with transaction.atomic():
            job = self.repository.get_job(job.id, lock=True)
            if job.status != "searching":
                return None
            if self.repository.pending_assignment_for_job(job.id):
                return None
            assignment = self._offer_next_locked(job, now)

        if assignment is not None:
            self._announce_offer(job, assignment)
        return assignment

    def _offer_next_locked(self, job, now):
        for candidate in self.repository.unoffered_candidates(job):
            if not self.repository.driver_is_offerable(candidate.driver_id):
                logger.debug("Skipping driver %s for job %s: no longer free", candidate.driver_id, job.id)
                self.repository.mark_candidate(candidate.id, skipped=True)
                continue

            try:
                with transaction.atomic():
                    assignment = self.repository.create_assignment(
                        job=job,
                        driver_id=candidate.driver_id,
                        status="pending",
                        priority=max(1, 10 - candidate.rank),
                        rank=candidate.rank,
                        matching_pass=candidate.matching_pass,
                        distance_km=candidate.distance_km,
                        eta_minutes=candidate.eta_minutes,
                        total_score=candidate.total_score,
                        created_at=now,
                        expires_at=now + timedelta(seconds=self.policy.offer_window_seconds),
                    )
            except IntegrityError:
                # Another job's offer reached this driver first.
                logger.info("Driver %s picked up another offer, skipping for job %s", candidate.driver_id, job.id)
                self.repository.mark_candidate(candidate.id, skipped=True)
                continue

            self.repository.mark_candidate(candidate.id, offered_at=now)
            return assignment
        return None

    def _announce_offer(self, job, assignment) -> None:
        self.notifier.notify_driver(
            assignment.driver_id,
            events.JOB_OFFER,
            job_payload(
                job,
                assignment_id=assignment.id,
                distance_km=round(assignment.distance_km, 3),
                eta_minutes=assignment.eta_minutes,
                expires_at=assignment.expires_at.isoformat(),
                offer_window_seconds=self.policy.offer_window_seconds,
            ),
        )

        if not self.policy.schedule_offer_timers:
            return
        try:
            expire_assignment_task.apply_async((assignment.id,), eta=assignment.expires_at)
        except Exception:
            # The periodic expiry scan still covers this offer.
            logger.exception("Failed to schedule expiry for assignment %s", assignment.id)

    # ---------------------- Driver responses ----------------------

    def respond_to_assignment(self, assignment_id: int, response: str, driver_id: int,
                              reason: str = "", now=None):
        """
        Apply a driver's accept or reject to their pending offer.

        Raises:
            JobValidationError: If response is not accept/reject
            NotFoundError: If the assignment does not exist
            UnauthorizedResponseError: If the offer belongs to another driver
            AlreadyResolvedError: If the offer is no longer pending (or has run out of time)
        """
        if response not in RESPONSES:
            raise JobValidationError(f"Response must be one of {', '.join(RESPONSES)}")
        now = now or timezone.now()

        assignment = self.repository.get_assignment(assignment_id)
        if assignment.driver_id != driver_id:
            raise UnauthorizedResponseError("This offer belongs to another driver")
        if assignment.status != "pending":
            raise AlreadyResolvedError(f"This offer is already {assignment.status}")
        if now >= assignment.expires_at:
            self._expire(assignment, now)
            raise AlreadyResolvedError("This offer has timed out")

        response_time = max(0.0, (now - assignment.created_at).total_seconds())
        if response == "accept":
            self._accept(assignment, now, response_time)
        else:
            self._reject(assignment, now, response_time, reason)

        return self.repository.get_assignment(assignment_id)

    def _accept(self, assignment, now, response_time: float) -> None:
        with transaction.atomic():
            job = self.repository.get_job(assignment.job_id, lock=True)
            won = self.repository.transition_assignment(
                assignment.id, "accepted", responded_at=now, response_time_seconds=response_time
            )
            if not won:
                raise AlreadyResolvedError("This offer was already handled")
            if job.status != "searching" or job.driver_id is not None:
                raise ConflictError(f"Job {job.id} is no longer looking for a driver")

            job.driver_id = assignment.driver_id
            job.status = "assigned"
            job.assigned_at = now
            job.save(update_fields=["driver", "status", "assigned_at"])

            self.repository.set_driver_status(assignment.driver_id, "busy")
            self.geofences.create_geofence(job, "pickup")
            self.repository.resolve_queue_item(job.id, now)

        self.repository.record_driver_response(assignment.driver_id, response_time)
        logger.info("Driver %s accepted job %s (%.1fs)", assignment.driver_id, job.id, response_time)

        driver = assignment.driver
        self.notifier.notify_customer(
            job,
            events.JOB_ASSIGNED,
            "Your driver is on the way.",
            driver={
                "id": driver.id,
                "name": driver.user.get_full_name() or driver.user.username,
                "vehicle_number": driver.vehicle_number,
                "vehicle_type": driver.vehicle_type,
                "rating": driver.rating,
            },
            eta_minutes=assignment.eta_minutes,
        )
        self.notifier.notify_driver(
            assignment.driver_id,
            events.JOB_ASSIGNED,
            job_payload(job, assignment_id=assignment.id, message="Navigate to pickup location."),
        )

    def _reject(self, assignment, now, response_time: float, reason: str) -> None:
        won = self.repository.transition_assignment(
            assignment.id,
            "rejected",
            responded_at=now,
            response_time_seconds=response_time,
            rejection_reason=reason or "",
        )
        if not won:
            raise AlreadyResolvedError("This offer was already handled")

        self.repository.record_driver_response(assignment.driver_id, response_time)
        logger.info("Driver %s rejected job %s", assignment.driver_id, assignment.job_id)

        job = self.repository.get_job(assignment.job_id)
        self.notifier.notify_customer(job, events.JOB_STILL_PENDING, "Still looking for a driver.")
        self._advance(job, now)

    # ---------------------- Expiry & cancellation ----------------------

    def expire_due(self, now=None) -> int:
        """Expire every pending offer past its deadline. Returns how many expired."""
        now = now or timezone.now()
        expired = 0
        for assignment in self.repository.due_pending_assignments(now):
            try:
                if self._expire(assignment, now):
                    expired += 1
            except Exception:
                logger.exception("Error expiring assignment %s", assignment.id)
        return expired

    def expire_assignment(self, assignment_id: int, now=None) -> bool:
        """Expire one offer if it is still pending and past its deadline."""
        now = now or timezone.now()
        assignment = self.repository.get_assignment(assignment_id)
        if assignment.status != "pending" or now < assignment.expires_at:
            return False
        return self._expire(assignment, now)

    def _expire(self, assignment, now) -> bool:
        if not self.repository.transition_assignment(assignment.id, "expired", responded_at=now):
            return False

        self.repository.record_driver_response(assignment.driver_id)
        logger.info("Offer %s to driver %s for job %s expired", assignment.id, assignment.driver_id, assignment.job_id)

        self.notifier.notify_driver(
            assignment.driver_id,
            events.OFFER_EXPIRED,
            {
                "assignment_id": assignment.id,
                "job_id": assignment.job_id,
                "message": "Your job offer has timed out.",
            },
        )
        job = self.repository.get_job(assignment.job_id)
        self._advance(job, now)
        return True

    def cancel_pending_for_job(self, job, now=None) -> int:
        """Cancel the job's pending offer, if any. Returns how many were cancelled."""
        now = now or timezone.now()
        assignment = self.repository.pending_assignment_for_job(job.id)
        if assignment is None:
            return 0
        if not self.repository.transition_assignment(assignment.id, "cancelled", responded_at=now):
            return 0

        payload = {"assignment_id": assignment.id, "job_id": job.id, "message": "Job request cancelled."}
        # callers may still roll back; tell the driver only once the cancel is durable
        transaction.on_commit(
            lambda: self.notifier.notify_driver(assignment.driver_id, events.JOB_CANCELLED, payload)
        )
        return 1

    # ---------------------- Helpers ----------------------

    def _advance(self, job, now):
        """Offer the next candidate, or hand the job over once none is left."""
        assignment = self.offer_next(job, now)
        if assignment is not None:
            return assignment

        job.refresh_from_db()
        if job.status == "searching" and self.repository.pending_assignment_for_job(job.id) is None:
            logger.info("Candidates exhausted for job %s (pass %s)", job.id, job.matching_pass)
            if self.on_exhausted is not None:
                try:
                    self.on_exhausted(job, "All ranked candidates declined or expired")
                except DispatchError as exc:
                    logger.warning("Could not requeue job %s: %s", job.id, exc)
        return None
