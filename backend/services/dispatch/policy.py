"""
Tunable thresholds for matching and dispatch.

Values come from the DISPATCH dict in Django settings. No logic lives here
beyond loading and sanity checks, so weights and windows can be tuned
without touching the algorithms.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from django.conf import settings

FACTORS = ("distance", "rating", "completion_rate", "response_time", "availability")


def _default_weights() -> Dict[str, float]:
    return {
        "distance": 0.35,
        "rating": 0.25,
        "completion_rate": 0.20,
        "response_time": 0.10,
        "availability": 0.10,
    }


@dataclass(frozen=True)
class DispatchPolicy:
    # --- Scoring ---
    weights: Dict[str, float] = field(default_factory=_default_weights)
    # Response times at or above this score 0 on the response-time factor.
    max_response_time_seconds: float = 120

    # --- Matching ---
    location_staleness_seconds: int = 600
    default_max_distance_km: float = 15.0
    default_min_rating: float = 3.0
    default_search_radius_km: float = 10.0
    candidate_limit: int = 20
    avg_speed_kmh: float = 40.0

    # --- Offers ---
    offer_window_seconds: int = 120
    schedule_offer_timers: bool = True

    # --- Reassignment ---
    max_attempts: int = 3
    backoff_base_seconds: int = 10
    backoff_max_seconds: int = 120
    reassignment_radius_step_km: float = 2.5
    reassignment_batch_size: int = 10
    # Items left in processing longer than this are taken over by the next run.
    queue_claim_timeout_seconds: int = 300

    # --- Geofencing / tracking ---
    pickup_geofence_radius_meters: int = 50
    delivery_geofence_radius_meters: int = 100
    location_history_limit: int = 50

    def validate(self) -> None:
        missing = [name for name in FACTORS if name not in self.weights]
        if missing:
            raise ValueError(f"Missing scoring weights: {', '.join(missing)}")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("Scoring weights must be >= 0")
        if abs(sum(self.weights[name] for name in FACTORS) - 1.0) > 1e-6:
            raise ValueError("Scoring weights must sum to 1.0")
        if self.offer_window_seconds <= 0:
            raise ValueError("offer_window_seconds must be > 0")
        if self.max_response_time_seconds <= 0:
            raise ValueError("max_response_time_seconds must be > 0")
        if self.avg_speed_kmh <= 0:
            raise ValueError("avg_speed_kmh must be > 0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.candidate_limit < 1:
            raise ValueError("candidate_limit must be >= 1")
        if self.queue_claim_timeout_seconds <= 0:
            raise ValueError("queue_claim_timeout_seconds must be > 0")

    def backoff_seconds(self, attempt: int) -> int:
        """Capped exponential delay before retry number `attempt`."""
        delay = self.backoff_base_seconds * (2 ** max(0, attempt - 1))
        return int(min(delay, self.backoff_max_seconds))

    def search_radius_km(self, attempt: int = 1, max_distance_km: Optional[float] = None) -> float:
        """Search radius for a matching pass, widened on each reassignment attempt."""
        radius = self.default_search_radius_km + self.reassignment_radius_step_km * max(0, attempt - 1)
        limit = max_distance_km if max_distance_km is not None else self.default_max_distance_km
        return min(radius, limit)


_SETTING_KEYS = {
    "WEIGHTS": "weights",
    "MAX_RESPONSE_TIME_SECONDS": "max_response_time_seconds",
    "LOCATION_STALENESS_SECONDS": "location_staleness_seconds",
    "DEFAULT_MAX_DISTANCE_KM": "default_max_distance_km",
    "DEFAULT_MIN_RATING": "default_min_rating",
    "DEFAULT_SEARCH_RADIUS_KM": "default_search_radius_km",
    "CANDIDATE_LIMIT": "candidate_limit",
    "AVG_SPEED_KMH": "avg_speed_kmh",
    "OFFER_WINDOW_SECONDS": "offer_window_seconds",
    "SCHEDULE_OFFER_TIMERS": "schedule_offer_timers",
    "MAX_ATTEMPTS": "max_attempts",
    "BACKOFF_BASE_SECONDS": "backoff_base_seconds",
    "BACKOFF_MAX_SECONDS": "backoff_max_seconds",
    "REASSIGNMENT_RADIUS_STEP_KM": "reassignment_radius_step_km",
    "REASSIGNMENT_BATCH_SIZE": "reassignment_batch_size",
    "QUEUE_CLAIM_TIMEOUT_SECONDS": "queue_claim_timeout_seconds",
    "PICKUP_GEOFENCE_RADIUS_METERS": "pickup_geofence_radius_meters",
    "DELIVERY_GEOFENCE_RADIUS_METERS": "delivery_geofence_radius_meters",
    "LOCATION_HISTORY_LIMIT": "location_history_limit",
}


def load_policy(overrides: Optional[Dict] = None) -> DispatchPolicy:
    """
    Build a validated policy from settings.DISPATCH, plus optional overrides
    keyed by field name.
    """
    raw = getattr(settings, "DISPATCH", {}) or {}
    kwargs = {}
    for key, attr in _SETTING_KEYS.items():
        if key in raw:
            kwargs[attr] = dict(raw[key]) if key == "WEIGHTS" else raw[key]
    kwargs.update(overrides or {})

    policy = DispatchPolicy(**kwargs)
    policy.validate()
    return policy
