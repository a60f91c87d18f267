"""Common utility functions."""

from .geo import (
    TravelEstimate,
    calculate_distance,
    calculate_distance_km,
    estimate_travel,
    is_valid_coordinate,
)

__all__ = [
    "TravelEstimate",
    "calculate_distance",
    "calculate_distance_km",
    "estimate_travel",
    "is_valid_coordinate",
]
