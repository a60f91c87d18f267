"""
Eligible-driver lookup around a pickup point.

A cheap great-circle radius check is applied in Python after the database
filters; routing-quality ETAs are left to the scoring step.
"""

import logging
from dataclasses import dataclass
from typing import List

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from common.utils import calculate_distance_km, is_valid_coordinate
from drivers.models import DriverProfile
from services.exceptions import InvalidCoordinatesError

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    driver: DriverProfile
    straight_line_km: float

    @property
    def location(self):
        return float(self.driver.current_latitude), float(self.driver.current_longitude)


def eligible_drivers_queryset(now=None):
    """Online, credit-holding, non-flagged drivers with a known location."""
    now = now or timezone.now()
    anomaly_threshold = getattr(settings, "ANOMALY_THRESHOLD", 3)
    return (
        DriverProfile.objects.select_related("user")
        .filter(
            status=DriverProfile.STATUS_ONLINE,
            anomaly_count__lt=anomaly_threshold,
            credit_balance__gt=0,
            current_latitude__isnull=False,
            current_longitude__isnull=False,
        )
        .filter(Q(credit_expires_at__isnull=True) | Q(credit_expires_at__gt=now))
    )


def find_candidate_drivers(pickup_lat, pickup_lng, search_radius_km) -> List[Candidate]:
    """
    Drivers eligible for a trip starting at the pickup point.

    Args:
        pickup_lat: Pickup latitude
        pickup_lng: Pickup longitude
        search_radius_km: Straight-line radius around the pickup

    Returns:
        Candidates closest first. An empty list when nobody qualifies.
    """
    if not is_valid_coordinate(pickup_lat, pickup_lng):
        raise InvalidCoordinatesError(f"Invalid pickup coordinates ({pickup_lat}, {pickup_lng})")

    pickup_lat, pickup_lng = float(pickup_lat), float(pickup_lng)

    candidates: List[Candidate] = []
    for profile in eligible_drivers_queryset():
        distance_km = calculate_distance_km(
            pickup_lat,
            pickup_lng,
            float(profile.current_latitude),
            float(profile.current_longitude),
        )
        if distance_km <= float(search_radius_km):
            candidates.append(Candidate(profile, distance_km))

    candidates.sort(key=lambda c: (c.straight_line_km, c.driver.pk))

    logger.info(
        "Found %d candidate drivers within %skm of (%s, %s)",
        len(candidates), search_radius_km, pickup_lat, pickup_lng,
    )
    return candidates
