"""
Commission settlement.

Acceptance takes the platform commission from the driver's credit balance and
moves the trip to ACCEPTED in the same transaction. Completion moves the fare
from the rider's wallet, credits the driver's earnings and closes the trip,
again in one transaction.
"""

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.contrib.auth import get_user_model
from django.utils import timezone

from drivers.models import DriverProfile
from services.credits import deduct_commission, record_settlement
from services.exceptions import (
    InvalidAmountError,
    InvalidTransitionError,
    OfferExpiredError,
    OfferNotFoundError,
    TripAlreadyAcceptedError,
    TripNotFoundError,
)
from services.payments import credit_wallet, debit_wallet
from trips.models import Trip, TripOffer
from .state_machine import assert_transition

logger = logging.getLogger(__name__)
User = get_user_model()


@dataclass(frozen=True)
class CommissionSplit:
    platform_commission: int
    driver_earnings: int
    commission_rate: int


@dataclass(frozen=True)
class SettlementResult:
    rider_debit: int
    driver_credit: int
    platform_commission: int


def calculate_commission(fare: int, rate: int = None) -> CommissionSplit:
    """
    Split a fare into platform commission and driver earnings.

    Commission is rounded up: ceil(fare * rate / 100), integer arithmetic only.
    """
    if rate is None:
        rate = getattr(settings, "COMMISSION_RATE_PERCENT", 20)
    if isinstance(fare, bool) or not isinstance(fare, int) or fare < 0:
        raise InvalidAmountError(f"Fare must be a non-negative integer, got {fare!r}")

    commission = -(-fare * rate // 100)
    return CommissionSplit(
        platform_commission=commission,
        driver_earnings=fare - commission,
        commission_rate=rate,
    )


# ===================== Acceptance =====================

@transaction.atomic
def accept_offer(trip_id: int, driver_id: int) -> Trip:
    """
    Driver accepts their offer. Exactly one driver can win a trip.

    Raises:
        TripNotFoundError, TripAlreadyAcceptedError, OfferNotFoundError,
        OfferExpiredError, InsufficientCreditsError
    """
    try:
        trip = Trip.objects.select_for_update().get(pk=trip_id)
    except Trip.DoesNotExist:
        raise TripNotFoundError(f"Trip {trip_id} not found")

    if trip.status != Trip.STATUS_REQUESTED:
        raise TripAlreadyAcceptedError(f"Trip {trip_id} is already {trip.status}")

    offer = TripOffer.objects.filter(trip_id=trip_id, driver_id=driver_id).first()
    if offer is None:
        raise OfferNotFoundError(f"No offer for driver {driver_id} on trip {trip_id}")
    if offer.status != TripOffer.STATUS_PENDING:
        raise OfferExpiredError(f"Offer {offer.pk} is {offer.status}")

    split = calculate_commission(trip.fare)
    if split.platform_commission:
        deduct_commission(driver_id, trip, split.platform_commission, trip.fare)

    now = timezone.now()
    updated = Trip.objects.filter(pk=trip_id, status=Trip.STATUS_REQUESTED).update(
        driver_id=driver_id,
        status=Trip.STATUS_ACCEPTED,
        accepted_at=now,
        platform_commission=split.platform_commission,
        driver_earnings=split.driver_earnings,
    )
    if not updated:
        raise TripAlreadyAcceptedError(f"Trip {trip_id} was accepted by another driver")

    if not TripOffer.objects.filter(pk=offer.pk, status=TripOffer.STATUS_PENDING).update(
        status=TripOffer.STATUS_ACCEPTED,
        responded_at=now,
    ):
        raise OfferExpiredError(f"Offer {offer.pk} expired while accepting")

    siblings = TripOffer.objects.filter(trip_id=trip_id, status=TripOffer.STATUS_PENDING).exclude(pk=offer.pk)
    notified_user_ids = list(siblings.filter(sent_at__isnull=False).values_list("driver__user_id", flat=True))
    siblings.update(status=TripOffer.STATUS_CANCELLED, responded_at=now)

    DriverProfile.objects.filter(pk=driver_id).update(status=DriverProfile.STATUS_BUSY)

    trip = Trip.objects.select_related("rider", "driver__user").get(pk=trip_id)
    logger.info(
        "Trip %s accepted by driver %s (commission=%s, earnings=%s)",
        trip_id, driver_id, split.platform_commission, split.driver_earnings,
    )

    transaction.on_commit(lambda: _notify_accepted(trip, notified_user_ids))
    return trip


def _notify_accepted(trip, cancelled_driver_user_ids):
    from realtime.notifications import notify_driver_event, notify_rider_event, notify_trip_group

    notify_rider_event(
        "trip_accepted",
        trip,
        "Your trip has been accepted! The driver is on the way.",
    )
    notify_trip_group("trip_status_changed", trip)
    for user_id in cancelled_driver_user_ids:
        notify_driver_event("offer_cancelled", trip, user_id, "This trip was taken by another driver.")


# ===================== Completion =====================

@transaction.atomic
def complete_settlement(trip_id: int) -> SettlementResult:
    """
    Close an IN_PROGRESS trip and move the money.

    The rider's wallet is debited the fare and the driver's earnings wallet is
    credited, whatever the payment method. Commission was already taken at
    acceptance, so the credit ledger only gets a zero-delta entry.
    """
    try:
        trip = Trip.objects.select_for_update(of=("self",)).select_related("driver").get(pk=trip_id)
    except Trip.DoesNotExist:
        raise TripNotFoundError(f"Trip {trip_id} not found")

    assert_transition(trip.status, Trip.STATUS_COMPLETED)
    if trip.driver_id is None or trip.platform_commission is None:
        raise InvalidTransitionError(trip.status, Trip.STATUS_COMPLETED)

    if trip.fare:
        debit_wallet(trip.rider, trip.fare, trip, f"Trip payment - {trip.id}")
    if trip.driver_earnings:
        credit_wallet(trip.driver.user, trip.driver_earnings, trip, f"Trip earnings - {trip.id}")
    rider_debit, driver_credit = trip.fare, trip.driver_earnings

    record_settlement(trip.driver_id, trip, trip.platform_commission)

    now = timezone.now()
    updated = Trip.objects.filter(pk=trip.pk, status=Trip.STATUS_IN_PROGRESS).update(
        status=Trip.STATUS_COMPLETED,
        completed_at=now,
        payment_status=Trip.PAYMENT_PAID,
    )
    if not updated:
        raise InvalidTransitionError(trip.status, Trip.STATUS_COMPLETED)

    DriverProfile.objects.filter(pk=trip.driver_id).update(status=DriverProfile.STATUS_ONLINE)
    User.objects.filter(pk__in=[trip.rider_id, trip.driver.user_id]).update(
        completed_trips=F("completed_trips") + 1
    )

    logger.info(
        "Trip %s settled: rider_debit=%s driver_credit=%s commission=%s",
        trip.id, rider_debit, driver_credit, trip.platform_commission,
    )
    return SettlementResult(
        rider_debit=rider_debit,
        driver_credit=driver_credit,
        platform_commission=trip.platform_commission,
    )
