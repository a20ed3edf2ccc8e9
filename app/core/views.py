"""
Core views providing infrastructure endpoints.

This module contains views that are not part of the chat domain but are
essential for running it, such as health checks.
"""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Used by Docker health checks, Kubernetes probes and load balancers.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - channel_layer: "configured" or "missing"

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "channel_layer": "configured"
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "channel_layer": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError as exc:
        logger.warning(f"Health check database probe failed: {exc}")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    # Real-time delivery degrades gracefully, so a missing layer is reported
    # but does not fail the probe
    from channels.layers import get_channel_layer

    health_status["channel_layer"] = (
        "configured" if get_channel_layer() is not None else "missing"
    )

    status_code = 200 if is_healthy else 503
    return JsonResponse(health_status, status=status_code)
