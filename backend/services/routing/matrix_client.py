"""
Distance/duration matrix and snap-to-road through OpenRouteService.

MatrixProvider never lets a provider failure escape: every call that cannot be
answered by the provider (no API key, open circuit, timeout, bad payload) is
answered by the great-circle estimator instead.
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import requests
from django.core.cache import cache

from common.utils.geo import TravelEstimate, calculate_distance, estimate_travel
from services.exceptions import MatrixProviderError

logger = logging.getLogger(__name__)

LatLng = Tuple[float, float]


@dataclass(frozen=True)
class SnapResult:
    latitude: float
    longitude: float
    deviation_m: float
    snapped: bool = True


class OpenRouteServiceClient:
    """Thin HTTP adapter. Raises MatrixProviderError on any failure."""

    PROFILE = "driving-car"

    def __init__(self, api_key, base_url="https://api.openrouteservice.org", timeout=5.0, session=None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path, payload):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(
                url,
                json=payload,
                headers={
                    "Authorization": self.api_key,
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            raise MatrixProviderError(f"OpenRouteService request to {path} failed: {exc}") from exc

    def matrix(self, origin: LatLng, destinations: Sequence[LatLng]):
        """Return (distances_km, durations_s) rows from origin to each destination."""
        locations = [[origin[1], origin[0]]] + [[lng, lat] for lat, lng in destinations]
        data = self._post(
            f"/v2/matrix/{self.PROFILE}",
            {
                "locations": locations,
                "sources": [0],
                "destinations": list(range(1, len(locations))),
                "metrics": ["distance", "duration"],
                "units": "km",
            },
        )
        try:
            distances = data["distances"][0]
            durations = data["durations"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise MatrixProviderError("Malformed matrix response") from exc

        if len(distances) != len(destinations) or len(durations) != len(destinations):
            raise MatrixProviderError("Matrix response size mismatch")
        return distances, durations

    def snap(self, lat, lng, radius=100):
        data = self._post(
            f"/v2/snap/{self.PROFILE}",
            {"locations": [[lng, lat]], "radius": radius},
        )
        try:
            snapped = data["locations"][0]
            if not snapped:
                return None
            lng, lat = snapped["location"][:2]
            return float(lat), float(lng)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise MatrixProviderError("Malformed snap response") from exc


class RoutingMetrics:
    """Process-local counters exposed by the health check."""

    FIELDS = ("success", "failure", "cache_hits", "cache_misses", "fallbacks")

    def __init__(self):
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(self.FIELDS, 0)

    def incr(self, name):
        with self._lock:
            self._counts[name] += 1

    def snapshot(self):
        with self._lock:
            return dict(self._counts)


class MatrixProvider:
    """Cached, circuit-protected travel estimates with a great-circle fallback."""

    CACHE_PREFIX = "ors:matrix"

    def __init__(
        self,
        client: Optional[OpenRouteServiceClient],
        breaker,
        cache_ttl=30,
        cache_precision=4,
        minutes_per_km=3,
    ):
        self.client = client
        self.breaker = breaker
        self.cache_ttl = cache_ttl
        self.cache_precision = cache_precision
        self.minutes_per_km = minutes_per_km
        self.metrics = RoutingMetrics()

    # ---------------------- matrix ----------------------

    def _cache_key(self, origin, destinations):
        p = self.cache_precision
        points = [origin] + list(destinations)
        return self.CACHE_PREFIX + ":" + ";".join(
            f"{round(lat, p)},{round(lng, p)}" for lat, lng in points
        )

    def fallback_estimates(self, origin: LatLng, destinations: Sequence[LatLng]) -> List[TravelEstimate]:
        return [
            estimate_travel(origin[0], origin[1], lat, lng, minutes_per_km=self.minutes_per_km)
            for lat, lng in destinations
        ]

    def get_travel_estimates(self, origin: LatLng, destinations: Sequence[LatLng]) -> List[TravelEstimate]:
        """One estimate per destination, in order. Never raises for provider trouble."""
        destinations = [(float(lat), float(lng)) for lat, lng in destinations]
        origin = (float(origin[0]), float(origin[1]))
        if not destinations:
            return []

        if self.client is None:
            return self.fallback_estimates(origin, destinations)

        key = self._cache_key(origin, destinations)
        cached = cache.get(key)
        if cached is not None:
            self.metrics.incr("cache_hits")
            return [TravelEstimate(*row) for row in cached]
        self.metrics.incr("cache_misses")

        try:
            distances, durations = self.breaker.call(self.client.matrix, origin, destinations)
        except MatrixProviderError as exc:
            self.metrics.incr("failure")
            self.metrics.incr("fallbacks")
            logger.warning("Routing matrix unavailable, using fallback estimates: %s", exc)
            return self.fallback_estimates(origin, destinations)

        self.metrics.incr("success")
        estimates = []
        for (lat, lng), distance_km, duration_s in zip(destinations, distances, durations):
            if distance_km is None or duration_s is None:
                # Unroutable pair
                estimates.append(
                    estimate_travel(origin[0], origin[1], lat, lng, minutes_per_km=self.minutes_per_km)
                )
            else:
                estimates.append(TravelEstimate(float(distance_km), float(duration_s) / 60.0))

        cache.set(
            key,
            [(e.distance_km, e.duration_min, e.estimated) for e in estimates],
            self.cache_ttl,
        )
        return estimates

    # ---------------------- snapping ----------------------

    def snap_to_road(self, lat, lng) -> SnapResult:
        """Best effort. On any failure the raw point is returned with zero deviation."""
        lat, lng = float(lat), float(lng)
        if self.client is None:
            return SnapResult(lat, lng, 0.0, snapped=False)

        try:
            snapped = self.breaker.call(self.client.snap, lat, lng)
        except MatrixProviderError:
            logger.exception("Snap to road failed for (%s, %s)", lat, lng)
            return SnapResult(lat, lng, 0.0, snapped=False)

        if snapped is None:
            return SnapResult(lat, lng, 0.0, snapped=False)

        snapped_lat, snapped_lng = snapped
        deviation = calculate_distance(lat, lng, snapped_lat, snapped_lng)
        return SnapResult(snapped_lat, snapped_lng, deviation)

    def health(self):
        return {
            "provider": "openrouteservice" if self.client else "fallback",
            "circuit": self.breaker.get_state(),
            "metrics": self.metrics.snapshot(),
        }
