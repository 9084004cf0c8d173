"""Common utility functions."""

from .geo import calculate_distance, distance_km, eta_minutes, validate_coordinates

__all__ = [
    "calculate_distance",
    "distance_km",
    "eta_minutes",
    "validate_coordinates",
]
