"""
Core trip lifecycle operations.

This module contains the business logic for creating trips, moving them
through the status state machine, cancelling them and dispatching scheduled
trips, kept apart from the views layer for testability and reuse.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from drivers.models import DriverProfile
from services.credits import refund_credits
from services.exceptions import (
    InvalidAmountError,
    InvalidCoordinatesError,
    InvalidTransitionError,
    TripNotFoundError,
)
from common.utils import is_valid_coordinate
from trips.models import Trip, TripOffer
from .settlement import complete_settlement
from .state_machine import (
    ROLE_DRIVER,
    ROLE_RIDER,
    STATUS_TIMESTAMPS,
    assert_transition,
    resolve_actor_relationship,
)

logger = logging.getLogger(__name__)

# Statuses in which the driver had not yet reached the rider
PRE_ARRIVAL_STATUSES = (Trip.STATUS_ACCEPTED,)


@dataclass
class TripResult:
    """Result object for trip operations."""
    success: bool
    trip: Optional[Trip] = None
    message: str = ""
    extra: Optional[Dict[str, Any]] = None


# ===================== Rider Operations =====================

def create_trip(
    rider,
    pickup_latitude: float,
    pickup_longitude: float,
    drop_latitude: float,
    drop_longitude: float,
    fare: int,
    distance_km: float = 0,
    duration_min: float = 0,
    service_type: str = "city",
    payment_method: str = Trip.PAYMENT_WALLET,
    scheduled_for=None,
    matrix_provider=None,
) -> TripResult:
    """
    Create a trip request and start dispatching it.

    Trips scheduled in the future are stored only; the scheduled-trip task
    dispatches them once they are due.
    """
    if not is_valid_coordinate(pickup_latitude, pickup_longitude):
        raise InvalidCoordinatesError("Invalid pickup coordinates")
    if not is_valid_coordinate(drop_latitude, drop_longitude):
        raise InvalidCoordinatesError("Invalid drop coordinates")
    if isinstance(fare, bool) or not isinstance(fare, int) or fare <= 0:
        raise InvalidAmountError("Fare must be a positive integer")

    now = timezone.now()
    due_now = scheduled_for is None or scheduled_for <= now

    trip = Trip.objects.create(
        rider=rider,
        pickup_latitude=round(float(pickup_latitude), 6),
        pickup_longitude=round(float(pickup_longitude), 6),
        drop_latitude=round(float(drop_latitude), 6),
        drop_longitude=round(float(drop_longitude), 6),
        fare=fare,
        distance_km=distance_km,
        duration_min=duration_min,
        service_type=service_type,
        payment_method=payment_method,
        scheduled_for=scheduled_for,
        # A schedule already due is dispatched right here, not again by the beat task
        scheduled_dispatched_at=now if scheduled_for is not None and due_now else None,
    )
    logger.info("Trip %s requested by rider %s (fare=%s)", trip.id, rider.pk, fare)

    if not due_now:
        return TripResult(
            success=True,
            trip=trip,
            message="Trip scheduled. Drivers will be notified when it is due.",
            extra={"driver_candidates": 0, "scheduled": True},
        )

    from services.matching import dispatch
    offers = dispatch(
        trip.id,
        (float(pickup_latitude), float(pickup_longitude)),
        service_type,
        matrix_provider=matrix_provider,
    )
    trip.refresh_from_db()

    return TripResult(
        success=True,
        trip=trip,
        message="Notifying nearby drivers..." if offers else "No available drivers found nearby yet.",
        extra={"driver_candidates": len(offers), "scheduled": False},
    )


def get_current_rider_trip(rider) -> Optional[Trip]:
    """Rider's most recent trip that is not finished."""
    return (
        Trip.objects
        .filter(rider=rider, status__in=Trip.ACTIVE_STATUSES)
        .select_related("driver__user")
        .first()
    )


def get_current_driver_trip(driver: DriverProfile) -> Optional[Trip]:
    return (
        Trip.objects
        .filter(driver=driver, status__in=Trip.ACTIVE_STATUSES)
        .select_related("rider")
        .first()
    )


def get_trip_for_user(trip_id: int, user) -> Trip:
    """Fetch a trip the user participates in (or any trip for admins)."""
    try:
        trip = Trip.objects.select_related("rider", "driver__user").get(pk=trip_id)
    except Trip.DoesNotExist:
        raise TripNotFoundError(f"Trip {trip_id} not found")
    resolve_actor_relationship(trip, user)
    return trip


# ===================== Status Transitions =====================

def transition_trip(trip_id: int, actor, desired_status: str, reason: str = "") -> Trip:
    """
    Move a trip to desired_status on behalf of actor.

    The caller must be the rider, the assigned driver or an admin; only then is
    the transition itself checked. REQUESTED -> ACCEPTED is reserved for
    accept_offer. COMPLETED goes through settlement.
    """
    try:
        trip = Trip.objects.select_related("driver").get(pk=trip_id)
    except Trip.DoesNotExist:
        raise TripNotFoundError(f"Trip {trip_id} not found")

    relationship = resolve_actor_relationship(trip, actor)

    if desired_status == Trip.STATUS_ACCEPTED:
        raise InvalidTransitionError(trip.status, desired_status)
    assert_transition(trip.status, desired_status)

    if desired_status == Trip.STATUS_COMPLETED:
        complete_settlement(trip.pk)
        trip = Trip.objects.select_related("rider", "driver__user").get(pk=trip.pk)
        _notify_status(trip, "Your trip has been completed. Thank you for riding with us!")
        return trip

    if desired_status == Trip.STATUS_CANCELLED:
        return cancel_trip(trip.pk, actor, reason or f"Cancelled by {relationship}", relationship)

    return _advance(trip, desired_status)


@transaction.atomic
def _advance(trip: Trip, desired_status: str) -> Trip:
    updated = Trip.objects.filter(pk=trip.pk, status=trip.status).update(
        status=desired_status,
        **{STATUS_TIMESTAMPS[desired_status]: timezone.now()},
    )
    if not updated:
        current = Trip.objects.values_list("status", flat=True).get(pk=trip.pk)
        raise InvalidTransitionError(current, desired_status)

    trip = Trip.objects.select_related("rider", "driver__user").get(pk=trip.pk)
    logger.info("Trip %s moved to %s", trip.id, desired_status)

    messages = {
        Trip.STATUS_ARRIVED: "Your driver has arrived at the pickup point.",
        Trip.STATUS_IN_PROGRESS: "Your trip has started.",
    }
    transaction.on_commit(lambda: _notify_status(trip, messages.get(desired_status, "")))
    return trip


@transaction.atomic
def cancel_trip(trip_id: int, actor, reason: str = "", relationship: str = None) -> Trip:
    """
    Cancel a non-terminal trip.

    Pending offers are cancelled, an assigned driver goes back online, and the
    commission is refunded when the driver had not arrived yet.
    """
    try:
        trip = Trip.objects.select_for_update(of=("self",)).select_related("driver").get(pk=trip_id)
    except Trip.DoesNotExist:
        raise TripNotFoundError(f"Trip {trip_id} not found")

    if relationship is None:
        relationship = resolve_actor_relationship(trip, actor)
    assert_transition(trip.status, Trip.STATUS_CANCELLED)

    previous_status = trip.status
    now = timezone.now()
    updated = Trip.objects.filter(pk=trip.pk, status=previous_status).update(
        status=Trip.STATUS_CANCELLED,
        cancelled_at=now,
        cancellation_reason=reason,
    )
    if not updated:
        raise InvalidTransitionError(previous_status, Trip.STATUS_CANCELLED)

    pending = TripOffer.objects.filter(trip_id=trip.pk, status=TripOffer.STATUS_PENDING)
    offered_user_ids = list(pending.filter(sent_at__isnull=False).values_list("driver__user_id", flat=True))
    pending.update(status=TripOffer.STATUS_CANCELLED, responded_at=now)

    refunded = 0
    if trip.driver_id:
        DriverProfile.objects.filter(pk=trip.driver_id).update(status=DriverProfile.STATUS_ONLINE)
        if previous_status in PRE_ARRIVAL_STATUSES and trip.platform_commission:
            refund_credits(
                trip.driver_id,
                trip.platform_commission,
                trip=trip,
                reason=f"Trip {trip.pk} cancelled before arrival",
                actor=actor,
            )
            refunded = trip.platform_commission

    trip = Trip.objects.select_related("rider", "driver__user").get(pk=trip.pk)
    logger.info(
        "Trip %s cancelled by %s from %s (refund=%s)",
        trip.id, relationship, previous_status, refunded,
    )

    transaction.on_commit(lambda: _notify_cancelled(trip, relationship, offered_user_ids))
    return trip


# ===================== Scheduled Trips =====================

def dispatch_due_scheduled_trips(now=None, matrix_provider=None) -> int:
    """
    Dispatch scheduled trips whose time has come, each exactly once.

    Returns:
        Number of trips dispatched
    """
    now = now or timezone.now()
    batch_size = getattr(settings, "SCHEDULED_TRIP_BATCH_SIZE", 100)

    due_ids = list(
        Trip.objects
        .filter(
            status=Trip.STATUS_REQUESTED,
            scheduled_for__isnull=False,
            scheduled_for__lte=now,
            scheduled_dispatched_at__isnull=True,
        )
        .order_by("scheduled_for")
        .values_list("id", flat=True)[:batch_size]
    )

    from services.matching import dispatch

    dispatched = 0
    for trip_id in due_ids:
        # Claim the trip so a concurrent run does not dispatch it again
        claimed = Trip.objects.filter(pk=trip_id, scheduled_dispatched_at__isnull=True).update(
            scheduled_dispatched_at=now
        )
        if not claimed:
            continue
        try:
            dispatch(trip_id, matrix_provider=matrix_provider)
        except Exception:
            logger.exception("Failed to dispatch scheduled trip %s", trip_id)
            continue
        dispatched += 1

    if dispatched:
        logger.info("Dispatched %d scheduled trips", dispatched)
    return dispatched


# ===================== Helper Functions =====================

def _notify_status(trip: Trip, message: str):
    from realtime.notifications import notify_rider_event, notify_trip_group

    notify_rider_event("trip_status_changed", trip, message)
    notify_trip_group("trip_status_changed", trip)


def _notify_cancelled(trip: Trip, relationship: str, offered_user_ids):
    from realtime.notifications import notify_driver_event, notify_rider_event, notify_trip_group

    notified = set()
    if trip.driver_id and relationship != ROLE_DRIVER:
        notify_driver_event("trip_cancelled", trip, trip.driver.user_id, "The rider cancelled this trip.")
        notified.add(trip.driver.user_id)
    for user_id in offered_user_ids:
        if user_id not in notified:
            notify_driver_event("trip_cancelled", trip, user_id, "Trip request cancelled.")
            notified.add(user_id)

    if relationship != ROLE_RIDER:
        notify_rider_event("trip_cancelled", trip, "Your trip was cancelled. Please request again.")
    notify_trip_group("trip_status_changed", trip)
