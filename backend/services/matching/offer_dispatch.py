"""
Offer dispatch and expiry handling.

Sequential offers for one trip:
1. The best unsent PENDING offer is pushed to its driver
2. A Celery countdown task expires it if nobody answers
3. If expired/rejected, the next PENDING offer by score is pushed
4. Repeat until accepted or the queue is exhausted

Every status change on an offer is a conditional update on status=PENDING, so
an offer accepted concurrently is never expired or rejected.
"""

import logging
from datetime import timedelta
from typing import List, Optional, Tuple

from django.db import transaction
from django.utils import timezone

from realtime.notifications import notify_driver_event, notify_rider_event
from services.exceptions import OfferExpiredError, OfferNotFoundError, TripNotFoundError
from trips.models import DispatchConfig, Trip, TripOffer
from trips.tasks import expire_trip_offer_task
from .candidate_pool import find_candidate_drivers
from .offer_builder import build_offers_for_trip
from .scoring import rank_candidates

logger = logging.getLogger(__name__)


def _offer_timeout() -> int:
    return DispatchConfig.load().offer_timeout


def dispatch(
    trip_id: int,
    pickup: Optional[Tuple[float, float]] = None,
    service_type: Optional[str] = None,
    matrix_provider=None,
) -> List[TripOffer]:
    """
    Run one dispatch round for a REQUESTED trip.

    Takes a snapshot of DispatchConfig, finds and ranks candidates, stores the
    top max_offers as PENDING offers and pushes the first one.

    Returns:
        The offers of this round, best first. Empty when nobody is available.
    """
    try:
        trip = Trip.objects.select_related("rider").get(pk=trip_id)
    except Trip.DoesNotExist:
        raise TripNotFoundError(f"Trip {trip_id} not found")

    if trip.status != Trip.STATUS_REQUESTED:
        logger.info("Skipping dispatch for trip %s in status %s", trip.id, trip.status)
        return []

    config = DispatchConfig.load().snapshot()
    if pickup is None:
        pickup = (float(trip.pickup_latitude), float(trip.pickup_longitude))
    if service_type is None:
        service_type = trip.service_type

    candidates = find_candidate_drivers(pickup[0], pickup[1], config.search_radius_km)
    ranked = rank_candidates(candidates, pickup, service_type, config, matrix_provider)

    with transaction.atomic():
        trip = Trip.objects.select_for_update().get(pk=trip.pk)
        if trip.status != Trip.STATUS_REQUESTED:
            logger.info("Trip %s left REQUESTED during ranking, dropping round", trip.id)
            return []
        offers = build_offers_for_trip(trip, ranked, config.max_offers)

    if not offers:
        logger.info("No drivers available for trip %s", trip.id)
        notify_rider_event(
            "no_drivers_available",
            trip,
            message="No drivers are available right now. Please try again shortly.",
        )
        return []

    dispatch_next_offer(trip, config.offer_timeout)
    return offers


def dispatch_next_offer(trip: Trip, timeout: Optional[int] = None) -> bool:
    """
    Push the highest-score unsent PENDING offer to its driver.

    Drivers whose push fails are skipped immediately. When no PENDING offer is
    left at all, the rider is told that no drivers are available and the trip
    stays REQUESTED.

    Returns:
        True if an offer is now out with a driver, False otherwise
    """
    timeout = timeout or _offer_timeout()

    while True:
        offer = (
            trip.offers
            .filter(status=TripOffer.STATUS_PENDING, sent_at__isnull=True)
            .select_related("driver__user")
            .order_by("-score", "eta", "driver_id")
            .first()
        )
        if offer is None:
            break

        # Claim the offer; a concurrent dispatcher may have sent it already
        claimed = TripOffer.objects.filter(
            pk=offer.pk,
            status=TripOffer.STATUS_PENDING,
            sent_at__isnull=True,
        ).update(sent_at=timezone.now())
        if not claimed:
            continue

        delivered = notify_driver_event(
            "trip_offer",
            trip,
            offer.driver.user_id,
            extra={
                "offer_id": offer.id,
                "score": offer.score,
                "eta": offer.eta,
                "expires_in": timeout,
            },
        )
        if not delivered:
            logger.warning("Could not push offer %s to driver %s, advancing", offer.id, offer.driver_id)
            TripOffer.objects.filter(pk=offer.pk, status=TripOffer.STATUS_PENDING).update(
                status=TripOffer.STATUS_EXPIRED,
                responded_at=timezone.now(),
            )
            continue

        logger.info("Offer %s for trip %s sent to driver %s", offer.id, trip.id, offer.driver_id)
        expire_trip_offer_task.apply_async((offer.id,), countdown=timeout)
        return True

    if not trip.offers.filter(status=TripOffer.STATUS_PENDING).exists():
        trip.refresh_from_db(fields=["status"])
        if trip.status == Trip.STATUS_REQUESTED:
            logger.info("Offer queue exhausted for trip %s", trip.id)
            notify_rider_event(
                "no_drivers_available",
                trip,
                message="No drivers accepted your trip request. Please try again later.",
            )
    return False


def expire_offer_and_dispatch(offer: TripOffer) -> bool:
    """
    Expire a PENDING offer, tell its driver, then push the next one.

    Returns:
        True if a next offer was dispatched, False otherwise
    """
    expired = TripOffer.objects.filter(pk=offer.pk, status=TripOffer.STATUS_PENDING).update(
        status=TripOffer.STATUS_EXPIRED,
        responded_at=timezone.now(),
    )
    if not expired:
        logger.info("Offer %s is no longer pending, nothing to expire", offer.pk)
        return False

    trip = Trip.objects.get(pk=offer.trip_id)
    notify_driver_event(
        "offer_expired",
        trip,
        offer.driver.user_id,
        message="Your trip offer has timed out.",
    )

    if trip.status != Trip.STATUS_REQUESTED:
        return False
    return dispatch_next_offer(trip)


def reject_offer(trip_id: int, driver_id: int) -> None:
    """Driver declines their offer; the next PENDING offer goes out."""
    offer = TripOffer.objects.filter(trip_id=trip_id, driver_id=driver_id).first()
    if offer is None:
        raise OfferNotFoundError(f"No offer for driver {driver_id} on trip {trip_id}")

    rejected = TripOffer.objects.filter(pk=offer.pk, status=TripOffer.STATUS_PENDING).update(
        status=TripOffer.STATUS_REJECTED,
        responded_at=timezone.now(),
    )
    if not rejected:
        raise OfferExpiredError(f"Offer {offer.pk} is no longer pending")

    logger.info("Driver %s rejected offer %s for trip %s", driver_id, offer.pk, trip_id)

    trip = Trip.objects.get(pk=trip_id)
    if trip.status == Trip.STATUS_REQUESTED:
        dispatch_next_offer(trip)


def expire_stale_offers(now=None, timeout_seconds=None) -> int:
    """
    Expire sent offers older than the offer timeout whose Celery timer was lost.

    Returns:
        Number of offers expired
    """
    now = now or timezone.now()
    cutoff = now - timedelta(seconds=timeout_seconds or _offer_timeout())

    stale = (
        TripOffer.objects
        .filter(status=TripOffer.STATUS_PENDING, sent_at__isnull=False, sent_at__lte=cutoff)
        .select_related("driver__user")
    )

    count = 0
    for offer in stale:
        if TripOffer.objects.filter(pk=offer.pk, status=TripOffer.STATUS_PENDING).exists():
            expire_offer_and_dispatch(offer)
            count += 1

    if count:
        logger.info("Expired %d stale offers", count)
    return count
