"""
Build the ranked offer queue for one dispatch round.

Drivers already asked in an earlier round for the same trip are skipped, and
PENDING offers left over from an earlier round are replaced.
"""

import logging
from typing import List, Sequence

from django.db import transaction

from trips.models import Trip, TripOffer
from .scoring import ScoredCandidate

logger = logging.getLogger(__name__)


@transaction.atomic
def build_offers_for_trip(trip: Trip, ranked: Sequence[ScoredCandidate], max_offers: int) -> List[TripOffer]:
    """
    Create PENDING offers for the top max_offers ranked candidates.

    Args:
        trip: Trip being dispatched
        ranked: Candidates sorted best first
        max_offers: Size of the queue for this round

    Returns:
        Created offers, best first
    """
    trip.offers.filter(status=TripOffer.STATUS_PENDING).delete()

    already_asked = set(trip.offers.values_list("driver_id", flat=True))
    selected = [c for c in ranked if c.driver.pk not in already_asked][:max_offers]

    TripOffer.objects.bulk_create([
        TripOffer(
            trip=trip,
            driver=candidate.driver,
            status=TripOffer.STATUS_PENDING,
            score=candidate.score,
            eta=candidate.eta,
            distance_km=candidate.distance_km,
        )
        for candidate in selected
    ])
    offers = list(
        trip.offers
        .filter(status=TripOffer.STATUS_PENDING)
        .select_related("driver__user")
        .order_by("-score", "eta", "driver_id")
    )

    logger.info(
        "Built %d offers for trip %s (skipped %d previously asked drivers)",
        len(offers), trip.id, len(already_asked),
    )
    return offers
