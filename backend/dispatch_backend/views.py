import os
import redis
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework import status
from channels.layers import get_channel_layer

from jobs.models import MatchingRequest
from jobs.tasks import expire_assignment_task, process_reassignment_queue_task


def _check_database():
    MatchingRequest.objects.exists()


def _check_redis():
    client = redis.Redis.from_url(os.getenv("REDIS_URL", "redis://localhost:6379/0"), socket_timeout=3)
    client.ping()


def _check_channels():
    if get_channel_layer() is None:
        return "no channel layer"


def _check_celery():
    registered = expire_assignment_task.app.tasks
    for task in (expire_assignment_task, process_reassignment_queue_task):
        if task.name not in registered:
            return f"{task.name} not registered"


SERVICE_CHECKS = (
    ("database", _check_database),
    ("redis", _check_redis),
    ("channels", _check_channels),
    ("celery", _check_celery),
)


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Liveness of the dispatch backend's infrastructure; 503 if any service is down."""
    services = {}
    for name, check in SERVICE_CHECKS:
        try:
            problem = check()
        except Exception as e:
            problem = str(e) or type(e).__name__
        services[name] = f"unhealthy: {problem}" if problem else "healthy"

    overall = "healthy" if all(value == "healthy" for value in services.values()) else "unhealthy"
    return Response(
        {"status": overall, "timestamp": timezone.now().isoformat(), "services": services},
        status=status.HTTP_200_OK if overall == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
