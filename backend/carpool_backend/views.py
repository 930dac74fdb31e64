import logging
import os

import redis
from channels.layers import get_channel_layer
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from rides.tasks import dispatch_ride_event_task
from services.booking.queries import open_rides

logger = logging.getLogger(__name__)


def _check_database():
    # Touches both booking tables through the seat-count annotation
    open_rides().count()


def _check_redis():
    client = redis.Redis(
        host=os.getenv("REDIS_HOST", "localhost"),
        port=int(os.getenv("REDIS_PORT", 6379)),
        db=0,
        socket_timeout=3,
    )
    client.ping()


def _check_channels():
    if get_channel_layer() is None:
        raise RuntimeError("no channel layer")


def _check_celery():
    if dispatch_ride_event_task.name not in dispatch_ride_event_task.app.tasks:
        raise RuntimeError("event task not registered")


CHECKS = (
    ("database", _check_database),
    ("redis", _check_redis),
    ("channels", _check_channels),
    ("celery", _check_celery),
)


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Report database, Redis, channel layer and Celery status"""
    services = {}
    healthy = True

    for name, check in CHECKS:
        try:
            check()
            services[name] = "healthy"
        except Exception as e:
            logger.warning("Health check for %s failed: %s", name, e)
            services[name] = f"unhealthy: {e}"
            healthy = False

    return Response(
        {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": timezone.now().isoformat(),
            "services": services,
        },
        status=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
