import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from drivers.models import DriverProfile
from common.utils.geo import calculate_distance_km, is_valid_coordinate
from services.exceptions import DriverBusyError, DriverNotFoundError, InvalidCoordinatesError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationReport:
    accepted: bool
    anomaly_count: int
    forced_offline: bool
    latitude: float
    longitude: float
    deviation_m: float
    speed_kmh: Optional[float]


# DRIVER STATUS UPDATE
def update_driver_status(driver_id: int, new_status: str) -> None:
    """
    Online/offline toggle. Busy is owned by the trip lifecycle, so a busy
    driver is left untouched and DriverBusyError is raised.
    """
    updated = (
        DriverProfile.objects
        .filter(pk=driver_id)
        .exclude(status=DriverProfile.STATUS_BUSY)
        .update(status=new_status)
    )
    if not updated:
        if not DriverProfile.objects.filter(pk=driver_id).exists():
            raise DriverNotFoundError(driver_id=driver_id)
        raise DriverBusyError()
    logger.info("Driver %s is now %s", driver_id, new_status)


# LOCATION INTEGRITY
def report_location(driver_id: int, lat, lng, matrix_provider=None, now=None) -> LocationReport:
    """
    Store a GPS report and track implausible movement.

    The point is snapped to the road network when possible. The implied speed
    since the previous report raises the anomaly counter above
    SPEED_THRESHOLD_KMH and lowers it (never below zero) otherwise. Reaching
    ANOMALY_THRESHOLD forces the driver offline.
    """
    if not is_valid_coordinate(lat, lng):
        raise InvalidCoordinatesError(f"Invalid coordinates ({lat}, {lng})")

    if matrix_provider is None:
        from services.routing import get_matrix_provider
        matrix_provider = get_matrix_provider()

    speed_threshold = getattr(settings, "SPEED_THRESHOLD_KMH", 150)
    anomaly_threshold = getattr(settings, "ANOMALY_THRESHOLD", 3)

    # Network call stays outside the row lock
    snap = matrix_provider.snap_to_road(lat, lng)

    with transaction.atomic():
        try:
            profile = DriverProfile.objects.select_for_update().get(pk=driver_id)
        except DriverProfile.DoesNotExist:
            raise DriverNotFoundError(f"Driver {driver_id} not found")

        now = now or timezone.now()
        speed_kmh = None
        anomaly = False

        if profile.has_location and profile.last_location_update:
            elapsed_s = (now - profile.last_location_update).total_seconds()
            if elapsed_s > 0:
                distance_km = calculate_distance_km(
                    profile.current_latitude, profile.current_longitude,
                    snap.latitude, snap.longitude,
                )
                speed_kmh = distance_km / (elapsed_s / 3600.0)
                anomaly = speed_kmh > speed_threshold

        if anomaly:
            profile.anomaly_count += 1
            logger.warning(
                "Speed anomaly for driver %s: %.1f km/h (threshold %s, count %s)",
                driver_id, speed_kmh, speed_threshold, profile.anomaly_count,
            )
        elif speed_kmh is not None:
            profile.anomaly_count = max(0, profile.anomaly_count - 1)

        forced_offline = profile.anomaly_count >= anomaly_threshold
        update_fields = ["current_latitude", "current_longitude", "last_location_update", "anomaly_count"]
        if forced_offline and profile.status != DriverProfile.STATUS_OFFLINE:
            profile.status = DriverProfile.STATUS_OFFLINE
            update_fields.append("status")
            logger.error("Driver %s forced offline after %s GPS anomalies", driver_id, profile.anomaly_count)

        profile.current_latitude = round(snap.latitude, 6)
        profile.current_longitude = round(snap.longitude, 6)
        profile.last_location_update = now
        profile.save(update_fields=update_fields)

    return LocationReport(
        accepted=not anomaly,
        anomaly_count=profile.anomaly_count,
        forced_offline=forced_offline,
        latitude=snap.latitude,
        longitude=snap.longitude,
        deviation_m=snap.deviation_m,
        speed_kmh=speed_kmh,
    )
