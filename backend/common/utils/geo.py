"""
Geographic utility functions.

This module provides the straight-line geospatial calculations used by the
dispatch engine: haversine distance and a constant-speed ETA estimate.
No road-network routing happens anywhere in the backend.
"""

import math
from math import radians, cos, sin, asin, sqrt
from typing import Tuple

EARTH_RADIUS_KM = 6371.0
DEFAULT_AVG_SPEED_KMH = 40.0

LatLon = Tuple[float, float]


def validate_coordinates(lat, lon) -> LatLon:
    """
    Coerce a coordinate pair to floats and reject NaN/inf/out-of-range values.

    Raises:
        ValueError: If either value is not a usable coordinate
    """
    try:
        lat, lon = float(lat), float(lon)
    except (TypeError, ValueError):
        raise ValueError(f"Coordinates must be numeric, got ({lat!r}, {lon!r})")

    if math.isnan(lat) or math.isnan(lon) or math.isinf(lat) or math.isinf(lon):
        raise ValueError("Coordinates must be finite numbers")
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"Latitude out of range: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"Longitude out of range: {lon}")
    return lat, lon


def distance_km(a: LatLon, b: LatLon) -> float:
    """
    Great-circle distance between two (lat, lon) points in kilometres.

    Args:
        a: First point as (latitude, longitude)
        b: Second point as (latitude, longitude)

    Returns:
        Distance in kilometres
    """
    lat1, lon1 = validate_coordinates(*a)
    lat2, lon2 = validate_coordinates(*b)

    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(min(1.0, sqrt(h)))
    return EARTH_RADIUS_KM * c


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.

    Returns:
        Distance in meters
    """
    return distance_km((lat1, lon1), (lat2, lon2)) * 1000.0


def eta_minutes(distance: float, avg_speed_kmh: float = DEFAULT_AVG_SPEED_KMH) -> int:
    """
    Whole minutes needed to cover `distance` km at a constant average speed.

    Rounds up, so any non-zero distance costs at least one minute.
    """
    if avg_speed_kmh <= 0:
        raise ValueError("avg_speed_kmh must be > 0")
    if distance < 0 or math.isnan(distance):
        raise ValueError(f"distance must be a non-negative number, got {distance!r}")
    return int(math.ceil(distance / avg_speed_kmh * 60))
