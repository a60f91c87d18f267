"""Celery tasks for trip dispatch background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def expire_trip_offer_task(offer_id: int):
    """
    Expire a trip offer after its timeout.

    Scheduled when an offer is pushed to a driver. If the driver has not
    answered, the offer is expired and the next driver in the queue is
    notified. Expiry is conditional, so an offer accepted in the meantime is
    left alone.
    """
    from trips.models import TripOffer

    try:
        offer = TripOffer.objects.select_related("driver__user").get(id=offer_id)
    except TripOffer.DoesNotExist:
        logger.warning("Offer %s not found for expiry task", offer_id)
        return False

    if offer.status != TripOffer.STATUS_PENDING:
        logger.info("Offer %s already resolved (status: %s)", offer_id, offer.status)
        return False

    logger.info("Expiring trip offer %s for trip %s", offer_id, offer.trip_id)

    # Use services layer for expiry logic
    from services.matching import expire_offer_and_dispatch
    return expire_offer_and_dispatch(offer)


@shared_task
def sweep_stale_offers_task():
    """Periodic safety net for offers whose countdown task was lost."""
    from services.matching import expire_stale_offers
    return expire_stale_offers()


@shared_task
def dispatch_due_scheduled_trips_task():
    """Dispatch scheduled trips that have become due (runs every minute)."""
    from services.trip_management import dispatch_due_scheduled_trips
    return dispatch_due_scheduled_trips()
