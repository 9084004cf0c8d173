"""
Reassignment queue.

Jobs whose ranked candidates all declined or timed out get a queue item.
Each processing run re-matches due items with a wider search radius, up to
max_attempts passes, backing off exponentially between passes.
"""

import logging
from datetime import timedelta
from typing import Dict

from django.utils import timezone

from realtime import notifications as events
from .exceptions import ExhaustedRetriesError
from .policy import DispatchPolicy

logger = logging.getLogger(__name__)


class ReassignmentQueue:

    def __init__(self, repository, notifier, policy: DispatchPolicy, match_finder, assignments):
        self.repository = repository
        self.notifier = notifier
        self.policy = policy
        self.match_finder = match_finder
        self.assignments = assignments

    def enqueue(self, job, kind=None, error: str = "", now=None, original_driver_id=None):
        """
        Queue a job for another matching pass.

        The first call creates an item with attempt=1; later calls bump the
        attempt. An item whose attempt passes max_attempts is failed.

        Raises:
            ExhaustedRetriesError: If the job's item has already failed
        """
        now = now or timezone.now()
        item = self.repository.get_queue_item(job.id)

        if item is None:
            item = self.repository.create_queue_item(
                job=job,
                kind=kind or job.kind,
                attempt=1,
                max_attempts=self.policy.max_attempts,
                status="pending",
                priority=job.priority,
                last_error=error,
                original_driver_id=original_driver_id,
                next_attempt_at=now + timedelta(seconds=self.policy.backoff_seconds(1)),
            )
            logger.info("Queued job %s for reassignment", job.id)
            return item

        if item.status == "failed":
            raise ExhaustedRetriesError(f"Job {job.id} already used all {item.max_attempts} attempts")

        item.attempt += 1
        item.last_error = error
        self._retry_or_fail(item, now)
        return item

    def process_due(self, now=None, limit=None) -> Dict[str, int]:
        """
        Run one matching pass for every due pending item.

        Returns:
            Counters: processed, resolved, retried, failed, errors
        """
        now = now or timezone.now()
        limit = limit or self.policy.reassignment_batch_size
        summary = {"processed": 0, "resolved": 0, "retried": 0, "failed": 0, "errors": 0}

        stale_before = now - timedelta(seconds=self.policy.queue_claim_timeout_seconds)

        for item in self.repository.due_queue_items(now, limit, stale_before):
            if not self.repository.claim_queue_item(item.id, now, stale_before):
                continue
            item.status = "processing"
            summary["processed"] += 1
            try:
                outcome = self._process(item, now)
            except Exception as exc:
                logger.exception("Error processing reassignment for job %s", item.job_id)
                summary["errors"] += 1
                # an erroring pass still spends an attempt
                item.attempt += 1
                item.last_error = str(exc)[:500]
                try:
                    if self._retry_or_fail(item, now) == "failed":
                        summary["failed"] += 1
                except Exception:
                    logger.exception("Could not reschedule reassignment for job %s", item.job_id)
                continue
            summary[outcome] += 1

        if summary["processed"]:
            logger.info("Reassignment run: %s", summary)
        return summary

    def _process(self, item, now) -> str:
        job = self.repository.get_job(item.job_id)

        if job.status != "searching" or job.driver_id is not None:
            self._resolve(item, now)
            return "resolved"

        if item.attempt > item.max_attempts:
            self._fail(item, now, job)
            return "failed"

        radius = self.policy.search_radius_km(item.attempt, job.max_distance_km)
        candidates = self.match_finder.find_candidates(job, radius_km=radius, now=now)
        if candidates and self.assignments.create_assignments(job, candidates, now=now):
            self._resolve(item, now)
            logger.info("Reassigned job %s on attempt %s", job.id, item.attempt)
            return "resolved"

        item.attempt += 1
        item.last_error = "No available drivers found"
        return self._retry_or_fail(item, now, job)

    def _retry_or_fail(self, item, now, job=None) -> str:
        if item.attempt > item.max_attempts:
            self._fail(item, now, job)
            return "failed"

        item.status = "pending"
        item.next_attempt_at = now + timedelta(seconds=self.policy.backoff_seconds(item.attempt))
        item.save(update_fields=["attempt", "last_error", "status", "next_attempt_at", "updated_at"])
        logger.info(
            "Job %s retry %s/%s at %s", item.job_id, item.attempt, item.max_attempts, item.next_attempt_at
        )
        return "retried"

    def _resolve(self, item, now) -> None:
        item.status = "resolved"
        item.processed_at = now
        item.save(update_fields=["status", "processed_at", "updated_at"])

    def _fail(self, item, now, job=None) -> None:
        item.status = "failed"
        item.processed_at = now
        item.save(update_fields=["attempt", "last_error", "status", "processed_at", "updated_at"])

        job = job or self.repository.get_job(item.job_id)

        if self.repository.update_job_status(job.id, ["searching"], status="unmatched"):
            job.status = "unmatched"
        logger.warning("Giving up on job %s after %s attempts", job.id, item.max_attempts)
        self.notifier.notify_customer(
            job, events.NO_DRIVER_FOUND, "No drivers accepted your request. Please try again later."
        )
