"""
Geographic utility functions.

This module provides the core geospatial calculations used throughout the
application, including the straight-line travel estimate that stands in for
the routing provider when it is unavailable.
"""

import math
from dataclasses import dataclass
from math import radians, cos, sin, asin, sqrt

EARTH_RADIUS_METERS = 6371000

# Minutes of driving assumed per straight-line kilometre (~20 km/h in traffic)
DEFAULT_MINUTES_PER_KM = 3


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.
    
    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point
    
    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return c * EARTH_RADIUS_METERS


def calculate_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in kilometres."""
    return calculate_distance(lat1, lon1, lat2, lon2) / 1000.0


@dataclass(frozen=True)
class TravelEstimate:
    """Distance/duration pair for one origin -> destination leg."""
    distance_km: float
    duration_min: float
    estimated: bool = False


def estimate_travel(
    origin_lat: float,
    origin_lon: float,
    dest_lat: float,
    dest_lon: float,
    minutes_per_km: float = DEFAULT_MINUTES_PER_KM,
) -> TravelEstimate:
    """
    Deterministic fallback when no routing data is available.

    Uses the great-circle distance and a fixed minutes-per-km factor, so the
    same inputs always produce the same estimate.
    """
    distance_km = calculate_distance_km(origin_lat, origin_lon, dest_lat, dest_lon)
    return TravelEstimate(
        distance_km=distance_km,
        duration_min=distance_km * minutes_per_km,
        estimated=True,
    )


def is_valid_coordinate(lat, lon) -> bool:
    """True when lat/lon are finite numbers inside the WGS84 ranges."""
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0
