"""
Library API Backend — Health Check Route
=========================================

What:  Health check endpoint for monitoring and load balancer checks.
How:   Checks the database (SELECT 1) and the metadata resolver.
Who:   Docker health checks, load balancers, monitoring. Not behind Basic auth.

Status levels:
    - healthy:   database and Google Books reachable
    - degraded:  database fine, Google Books down or circuit open
                 (books still get created with placeholder data)
    - unhealthy: database unreachable
"""

import logging
import time

from fastapi import APIRouter, Request

from library_api import __version__
from library_api.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Returns the health status of the backend service and its dependencies.",
)
async def health_check(request: Request) -> HealthResponse:
    store = request.app.state.store
    resolver = request.app.state.metadata_resolver

    db_status = "connected"
    resolver_status = "available"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    if not await store.ping():
        db_status = "disconnected"
        overall = "unhealthy"

    # ── Check Google Books ────────────────────────────────────────────────
    if resolver.is_circuit_open:
        resolver_status = "circuit_open"
    elif not await resolver.health_check():
        resolver_status = "unavailable"

    if resolver_status != "available" and overall != "unhealthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        metadata_resolver=resolver_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
