"""
Find and rank drivers for a job.

One call is one matching pass: read nearby available drivers, score them,
drop the ineligible ones and return the best first.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from django.utils import timezone

from .policy import DispatchPolicy
from .scoring import CandidateScorer, DriverCandidate

logger = logging.getLogger(__name__)


class MatchFinder:

    def __init__(self, repository, scorer: CandidateScorer, policy: DispatchPolicy):
        self.repository = repository
        self.scorer = scorer
        self.policy = policy

    def find_candidates(self, job, radius_km: Optional[float] = None, limit: Optional[int] = None,
                        now=None) -> List[DriverCandidate]:
        """
        Ranked candidates for `job`, best first.

        Args:
            job: MatchingRequest to match
            radius_km: Search radius; capped by the job's max distance
            limit: Maximum number of candidates returned

        Returns:
            List of DriverCandidate, possibly empty
        """
        now = now or timezone.now()
        if radius_km is None:
            radius_km = self.policy.default_search_radius_km
        radius_km = min(float(radius_km), self.scorer.max_distance_for(job))
        limit = limit or self.policy.candidate_limit

        fresh_since = now - timedelta(seconds=self.policy.location_staleness_seconds)
        snapshots = self.repository.available_drivers_near(
            job.pickup_point, radius_km, fresh_since, job.service_type
        )
        # Drivers who turned this job down are not asked again.
        declined = self.repository.declined_driver_ids(job.id) if job.id else set()
        snapshots = [s for s in snapshots if s.driver_id not in declined]

        candidates = [
            candidate for candidate in self.scorer.rank(job, snapshots)
            if candidate.distance_km <= radius_km
        ][:limit]

        logger.info(
            "Matching pass for job %s: %d of %d drivers eligible (radius=%.1fkm)",
            job.id, len(candidates), len(snapshots), radius_km
        )
        return candidates
