"""
Driver matching and dispatch engine.

This module handles:
    - Scoring and ranking available drivers for a job
    - Sequential offers with accept/reject/expiry (daisy-chain pattern)
    - Re-matching jobs whose offers all failed (reassignment queue)
    - Geofence-driven arrival transitions
"""

from .coordinator import DispatchCoordinator, JobResult, build_coordinator
from .exceptions import (
    AlreadyResolvedError,
    ConflictError,
    DispatchError,
    ExhaustedRetriesError,
    JobValidationError,
    NoCandidatesError,
    NotFoundError,
    ScoringError,
    UnauthorizedResponseError,
)
from .geofencing import LocationUpdate
from .policy import DispatchPolicy, load_policy
from .scoring import DriverCandidate, DriverSnapshot

__all__ = [
    # Coordinator
    "DispatchCoordinator",
    "JobResult",
    "build_coordinator",
    # Values
    "DispatchPolicy",
    "load_policy",
    "DriverCandidate",
    "DriverSnapshot",
    "LocationUpdate",
    # Exceptions
    "DispatchError",
    "JobValidationError",
    "NotFoundError",
    "ConflictError",
    "UnauthorizedResponseError",
    "AlreadyResolvedError",
    "NoCandidatesError",
    "ExhaustedRetriesError",
    "ScoringError",
]
