"""
Candidate scoring.

Turns one driver snapshot plus a job into a DriverCandidate with five
normalized factor scores (each in [0, 1]) and a weighted total, or None when
the driver is not eligible for the job.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from common.utils import distance_km, eta_minutes, validate_coordinates
from .exceptions import ScoringError
from .policy import FACTORS, DispatchPolicy

logger = logging.getLogger(__name__)


@dataclass
class DriverSnapshot:
    """Point-in-time view of a driver, as read for one matching pass."""
    driver_id: int
    latitude: float
    longitude: float
    rating: float = 5.0
    completion_rate: float = 1.0
    acceptance_rate: float = 1.0
    total_jobs: int = 0
    last_response_time_seconds: float = 0.0
    is_available: bool = True
    has_active_job: bool = False
    vehicle_type: str = ""
    service_type: str = "both"
    preferred_max_distance_km: Optional[float] = None
    min_job_value: Optional[Decimal] = None
    max_job_value: Optional[Decimal] = None
    last_location_update: Optional[datetime] = None

    @classmethod
    def from_profile(cls, profile, has_active_job: bool = False) -> "DriverSnapshot":
        return cls(
            driver_id=profile.id,
            latitude=float(profile.current_latitude),
            longitude=float(profile.current_longitude),
            rating=profile.rating,
            completion_rate=profile.completion_rate,
            acceptance_rate=profile.acceptance_rate,
            total_jobs=profile.total_jobs,
            last_response_time_seconds=profile.last_response_time_seconds,
            is_available=profile.status == "available" and profile.is_verified,
            has_active_job=has_active_job,
            vehicle_type=profile.vehicle_type,
            service_type=profile.service_type,
            preferred_max_distance_km=profile.preferred_max_distance_km,
            min_job_value=profile.min_job_value,
            max_job_value=profile.max_job_value,
            last_location_update=profile.last_location_update,
        )

    @property
    def location(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass
class DriverCandidate:
    """A scored, eligible driver for one job."""
    driver_id: int
    distance_km: float
    eta_minutes: int
    scores: Dict[str, float] = field(default_factory=dict)
    total_score: float = 0.0

    def sort_key(self):
        return (-self.total_score, self.distance_km, self.driver_id)

    def to_dict(self) -> Dict:
        return {
            "driver_id": self.driver_id,
            "distance_km": round(self.distance_km, 3),
            "eta_minutes": self.eta_minutes,
            "scores": {name: round(value, 4) for name, value in self.scores.items()},
            "total_score": round(self.total_score, 4),
        }


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _finite(name: str, value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ScoringError(f"{name} is not numeric: {value!r}")
    if math.isnan(number) or math.isinf(number):
        raise ScoringError(f"{name} is not finite: {value!r}")
    return number


class CandidateScorer:
    """Scores drivers against a job using the policy's weights."""

    def __init__(self, policy: DispatchPolicy):
        self.policy = policy

    def max_distance_for(self, job) -> float:
        if job.max_distance_km is not None:
            return float(job.max_distance_km)
        return self.policy.default_max_distance_km

    def min_rating_for(self, job) -> float:
        if job.min_rating is not None:
            return float(job.min_rating)
        return self.policy.default_min_rating

    def score(self, job, snapshot: DriverSnapshot) -> Optional[DriverCandidate]:
        """
        Score one driver for a job.

        Returns None when the driver is excluded. Raises ScoringError when
        the snapshot itself is malformed.
        """
        if not snapshot.is_available or snapshot.has_active_job:
            return None

        try:
            validate_coordinates(snapshot.latitude, snapshot.longitude)
        except ValueError as exc:
            raise ScoringError(f"Driver {snapshot.driver_id}: {exc}")

        rating = _finite("rating", snapshot.rating)
        completion_rate = _finite("completion_rate", snapshot.completion_rate)
        response_time = _finite("last_response_time_seconds", snapshot.last_response_time_seconds)

        # Hard requirements
        if job.vehicle_type and snapshot.vehicle_type != job.vehicle_type:
            return None
        if snapshot.service_type not in ("both", job.service_type):
            return None
        if rating < self.min_rating_for(job):
            return None

        distance = distance_km(job.pickup_point, snapshot.location)
        max_distance = self.max_distance_for(job)
        if distance > max_distance:
            return None

        # Driver preferences
        if snapshot.preferred_max_distance_km is not None and distance > snapshot.preferred_max_distance_km:
            return None
        if job.estimated_value is not None:
            if snapshot.min_job_value is not None and job.estimated_value < snapshot.min_job_value:
                return None
            if snapshot.max_job_value is not None and job.estimated_value > snapshot.max_job_value:
                return None

        scores = {
            "distance": _clamp(1 - distance / max_distance) if max_distance > 0 else 0.0,
            "rating": _clamp(rating / 5),
            "completion_rate": _clamp(completion_rate),
            "response_time": _clamp(1 - response_time / self.policy.max_response_time_seconds),
            "availability": 1.0,
        }
        total = sum(self.policy.weights[name] * scores[name] for name in FACTORS)

        return DriverCandidate(
            driver_id=snapshot.driver_id,
            distance_km=distance,
            eta_minutes=eta_minutes(distance, self.policy.avg_speed_kmh),
            scores=scores,
            total_score=total,
        )

    def rank(self, job, snapshots: Iterable[DriverSnapshot], limit: Optional[int] = None) -> List[DriverCandidate]:
        """Score every snapshot, drop the excluded ones and sort best first."""
        candidates = []
        for snapshot in snapshots:
            try:
                candidate = self.score(job, snapshot)
            except ScoringError as exc:
                logger.warning("Skipping driver %s for job %s: %s", snapshot.driver_id, job.id, exc)
                continue
            except Exception:
                logger.exception("Unexpected error scoring driver %s for job %s", snapshot.driver_id, job.id)
                continue
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=DriverCandidate.sort_key)
        if limit is not None:
            candidates = candidates[:limit]
        return candidates
