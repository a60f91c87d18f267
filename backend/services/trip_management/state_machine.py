"""Allowed trip status transitions and who may request them."""

from trips.models import Trip
from services.exceptions import ForbiddenActionError, InvalidTransitionError

ROLE_RIDER = "rider"
ROLE_DRIVER = "driver"
ROLE_ADMIN = "admin"

ALLOWED_TRANSITIONS = {
    Trip.STATUS_REQUESTED: {Trip.STATUS_ACCEPTED, Trip.STATUS_CANCELLED},
    Trip.STATUS_ACCEPTED: {Trip.STATUS_ARRIVED, Trip.STATUS_CANCELLED},
    Trip.STATUS_ARRIVED: {Trip.STATUS_IN_PROGRESS, Trip.STATUS_CANCELLED},
    Trip.STATUS_IN_PROGRESS: {Trip.STATUS_COMPLETED, Trip.STATUS_CANCELLED},
    Trip.STATUS_COMPLETED: set(),
    Trip.STATUS_CANCELLED: set(),
}

# Timestamp stamped when a trip enters each status
STATUS_TIMESTAMPS = {
    Trip.STATUS_ACCEPTED: "accepted_at",
    Trip.STATUS_ARRIVED: "arrived_at",
    Trip.STATUS_IN_PROGRESS: "started_at",
    Trip.STATUS_COMPLETED: "completed_at",
    Trip.STATUS_CANCELLED: "cancelled_at",
}


def can_transition(current: str, desired: str) -> bool:
    return desired in ALLOWED_TRANSITIONS.get(current, set())


def assert_transition(current: str, desired: str) -> None:
    if not can_transition(current, desired):
        raise InvalidTransitionError(current, desired)


def resolve_actor_relationship(trip: Trip, user) -> str:
    """
    How the user relates to the trip: rider, driver or admin.

    Raises ForbiddenActionError for anyone else, before any legality check.
    """
    if user is None or not getattr(user, "is_authenticated", False):
        raise ForbiddenActionError("Authentication required")

    if trip.rider_id == user.pk:
        return ROLE_RIDER

    if trip.driver_id is not None and trip.driver.user_id == user.pk:
        return ROLE_DRIVER

    if getattr(user, "is_admin_role", False):
        return ROLE_ADMIN

    raise ForbiddenActionError("You are not a participant of this trip")
