import logging

import redis
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import connection
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

logger = logging.getLogger(__name__)


def _check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")
    return "healthy"


def _check_redis():
    client = redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3)
    client.ping()
    return "healthy"


def _check_channel_layer():
    if get_channel_layer() is None:
        raise RuntimeError("no channel layer configured")
    return "healthy"


def _check_offer_timer():
    from trips.tasks import expire_trip_offer_task

    if expire_trip_offer_task.name not in expire_trip_offer_task.app.tasks:
        raise RuntimeError("offer expiry task not registered")
    return "healthy"


# name -> (check, failure makes the service unhealthy)
# Redis is optional: the matrix cache and circuit breaker fall back locally.
HEALTH_CHECKS = {
    "database": (_check_database, True),
    "redis": (_check_redis, False),
    "channels": (_check_channel_layer, True),
    "celery": (_check_offer_timer, True),
}


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Liveness report for load balancers, plus routing circuit state."""
    from services.routing import get_matrix_provider

    overall = "healthy"
    services = {}
    for name, (check, critical) in HEALTH_CHECKS.items():
        try:
            services[name] = check()
        except Exception as exc:
            logger.warning("Health check %s failed: %s", name, exc)
            services[name] = f"{'unhealthy' if critical else 'unavailable'}: {exc}"
            if critical:
                overall = "unhealthy"

    services["routing"] = get_matrix_provider().health()

    return Response(
        {"status": overall, "timestamp": timezone.now().isoformat(), "services": services},
        status=status.HTTP_200_OK if overall == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
