"""
Routing layer - travel estimates and snapping.

This module handles:
    - Distance/duration matrix from the routing provider
    - Snap-to-road for driver location reports
    - Caching, circuit breaking and the great-circle fallback
"""

from functools import lru_cache

from django.conf import settings

from .circuit_breaker import CircuitBreaker
from .matrix_client import MatrixProvider, OpenRouteServiceClient, RoutingMetrics, SnapResult


@lru_cache(maxsize=1)
def get_matrix_provider() -> MatrixProvider:
    """Process-wide provider built from settings. Tests inject their own."""
    api_key = getattr(settings, "OPENROUTESERVICE_API_KEY", "")
    client = None
    if api_key:
        client = OpenRouteServiceClient(
            api_key,
            base_url=getattr(settings, "OPENROUTESERVICE_BASE_URL", "https://api.openrouteservice.org"),
            timeout=getattr(settings, "ORS_TIMEOUT_SECONDS", 5),
        )

    breaker = CircuitBreaker(
        "OpenRouteService",
        failure_threshold=getattr(settings, "CIRCUIT_BREAKER_FAILURE_THRESHOLD", 5),
        reset_timeout=getattr(settings, "CIRCUIT_BREAKER_RESET_TIMEOUT", 60),
    )
    return MatrixProvider(
        client,
        breaker,
        cache_ttl=getattr(settings, "MATRIX_CACHE_TTL", 30),
        cache_precision=getattr(settings, "MATRIX_CACHE_PRECISION", 4),
        minutes_per_km=getattr(settings, "FALLBACK_MINUTES_PER_KM", 3),
    )


__all__ = [
    "CircuitBreaker",
    "MatrixProvider",
    "OpenRouteServiceClient",
    "RoutingMetrics",
    "SnapResult",
    "get_matrix_provider",
]
