"""
Edgeserver — Health Check Route
================================

What:  Liveness endpoint for load balancers and container health checks.
How:   GET /api/health reports version, mode and uptime. It sits under the API
       prefix, so it goes through the general rate limiter like any API call.
"""

import logging
import time

from fastapi import APIRouter, Request

from edgeserver import __version__
from edgeserver.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(request: Request) -> HealthResponse:
    settings = request.app.state.settings
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.environment.value,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
