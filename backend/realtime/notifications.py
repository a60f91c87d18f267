"""
Server-side pushes to connected sockets.

Delivery is fire-and-forget: a failure is logged and reported as False, it
never rolls back the operation that triggered it.

Groups:
    driver_<user_id>  personal group of a driver
    user_<user_id>    personal group of a rider
    trip_<trip_id>    everyone following one trip
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def _group_send(group: str, payload: Dict[str, Any]) -> bool:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer, dropping %s for %s", payload["type"], group)
        return False

    try:
        async_to_sync(channel_layer.group_send)(group, payload)
    except Exception:
        logger.exception("Could not deliver %s to %s", payload["type"], group)
        return False

    logger.debug("Pushed %s to %s", payload["type"], group)
    return True


def _trip_payload(trip) -> Dict[str, Any]:
    from trips.serializers import TripSerializer
    return dict(TripSerializer(trip).data)


def _event(event_type, trip, message="", extra=None, with_trip=True, with_status=True):
    payload = {"type": event_type, "trip_id": trip.id}
    if with_status:
        payload["status"] = trip.status
    if with_trip:
        payload["trip_data"] = _trip_payload(trip)
    payload.update(extra or {})
    if message:
        payload["message"] = message
    return payload


def notify_driver_event(
    event_type: str,
    trip,
    driver_user_id: int | None,
    message: str = "",
    extra: Dict[str, Any] = None,
) -> bool:
    """
    Push an event to one driver's ``driver_<user_id>`` group.

    Args:
        event_type: consumer handler name (trip_offer, offer_expired, offer_cancelled, ...)
        trip: the Trip the event is about
        driver_user_id: target driver's user id; nothing is sent when empty
        extra: merged into the payload (offer_id, eta, expires_in for offers)
    """
    if not driver_user_id:
        return False
    payload = _event(event_type, trip, message, extra, with_status=False)
    return _group_send(f"driver_{driver_user_id}", payload)


def notify_rider_event(event_type: str, trip, message: str = "", extra: Dict[str, Any] = None) -> bool:
    """Push an event to the trip's rider through ``user_<rider_id>``."""
    if not trip.rider_id:
        return False
    return _group_send(f"user_{trip.rider_id}", _event(event_type, trip, message, extra))


def notify_trip_group(event_type: str, trip, extra: Dict[str, Any] = None) -> bool:
    return _group_send(f"trip_{trip.id}", _event(event_type, trip, extra=extra, with_trip=False))
