"""
Candidate scoring and ranking.

score = weight_eta * eta_norm
      + weight_rating * rating_norm
      + weight_acceptance * acceptance_norm
      + service_match_bonus (when vehicle type matches the requested service)
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from django.conf import settings
from django.db.models import Count

from drivers.models import DriverProfile
from trips.models import DispatchSettings, Trip, TripOffer
from .candidate_pool import Candidate

logger = logging.getLogger(__name__)

DEFAULT_ACCEPTANCE_RATE = 0.5

# Offer outcomes that count as the driver having taken the trip
ACCEPTED_TRIP_STATUSES = (
    Trip.STATUS_ACCEPTED,
    Trip.STATUS_ARRIVED,
    Trip.STATUS_IN_PROGRESS,
    Trip.STATUS_COMPLETED,
)


@dataclass(frozen=True)
class ScoredCandidate:
    driver: DriverProfile
    score: float
    eta: float  # minutes
    distance_km: float
    estimated: bool


def acceptance_stats(driver_ids: Sequence[int]) -> Dict[int, float]:
    """
    Historical acceptance rate per driver, from two grouped queries in total.

    Drivers with no offer history get DEFAULT_ACCEPTANCE_RATE.
    """
    driver_ids = list(driver_ids)
    if not driver_ids:
        return {}

    offer_counts = dict(
        TripOffer.objects
        .filter(driver_id__in=driver_ids)
        .values("driver_id")
        .annotate(n=Count("id"))
        .values_list("driver_id", "n")
    )
    accepted_counts = dict(
        Trip.objects
        .filter(driver_id__in=driver_ids, status__in=ACCEPTED_TRIP_STATUSES)
        .values("driver_id")
        .annotate(n=Count("id"))
        .values_list("driver_id", "n")
    )

    rates = {}
    for driver_id in driver_ids:
        offers = offer_counts.get(driver_id, 0)
        if offers:
            rates[driver_id] = min(accepted_counts.get(driver_id, 0) / offers, 1.0)
        else:
            rates[driver_id] = DEFAULT_ACCEPTANCE_RATE
    return rates


def compute_score(eta_minutes, rating, acceptance_rate, vehicle_type, service_type, config: DispatchSettings) -> float:
    eta_cap = getattr(settings, "ETA_CAP_MINUTES", 30)
    eta_norm = 1 - min(max(eta_minutes, 0) / eta_cap, 1)
    rating_norm = max(0.0, min(float(rating or 0) / 5.0, 1.0))

    score = (
        config.weight_eta * eta_norm
        + config.weight_rating * rating_norm
        + config.weight_acceptance * acceptance_rate
    )
    if service_type and vehicle_type == service_type:
        score += config.service_match_bonus
    return score


def rank_candidates(
    candidates: Sequence[Candidate],
    pickup: Tuple[float, float],
    service_type: Optional[str],
    config: DispatchSettings,
    matrix_provider=None,
) -> List[ScoredCandidate]:
    """
    Score every candidate and sort best first.

    One matrix lookup covers all candidates; the provider falls back to
    straight-line estimates on its own when routing is unavailable.
    Ties are broken by lower ETA, then by lower driver id.
    """
    if not candidates:
        return []

    if matrix_provider is None:
        from services.routing import get_matrix_provider
        matrix_provider = get_matrix_provider()

    estimates = matrix_provider.get_travel_estimates(pickup, [c.location for c in candidates])
    rates = acceptance_stats([c.driver.pk for c in candidates])

    scored = []
    for candidate, estimate in zip(candidates, estimates):
        driver = candidate.driver
        scored.append(ScoredCandidate(
            driver=driver,
            score=compute_score(
                estimate.duration_min,
                driver.rating,
                rates[driver.pk],
                driver.vehicle_type,
                service_type,
                config,
            ),
            eta=estimate.duration_min,
            distance_km=estimate.distance_km,
            estimated=estimate.estimated,
        ))

    scored.sort(key=lambda s: (-s.score, s.eta, s.driver.pk))

    logger.debug(
        "Ranked %d candidates: %s",
        len(scored), [(s.driver.pk, round(s.score, 3)) for s in scored],
    )
    return scored
