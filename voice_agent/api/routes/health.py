"""
Health Check Endpoints

Provides health, readiness, and liveness probes for monitoring,
load balancers, and Kubernetes.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from voice_agent.config import settings
from voice_agent.core.intelligence.session.store import get_session_store
from voice_agent.core.scheduling.calendar_client import get_calendar_client
from voice_agent.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"

# Track application start time for uptime calculation
_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    """Get application uptime in seconds."""
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadyResponse(BaseModel):
    """Readiness check response with dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    """Liveness check response."""
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


class DetailedHealthResponse(BaseModel):
    """Detailed health check with runtime info."""
    status: str
    timestamp: datetime
    version: str
    environment: str
    uptime_seconds: Optional[float]
    active_sessions: int
    checks: dict[str, str]
    config: dict[str, str]


async def _dependency_checks() -> dict[str, str]:
    """Reachability of Redis and the Calendar Agent.

    Redis only backs rate limiting, which fails open, so its outage is
    reported as "degraded" rather than "failed".
    """
    checks = {}
    checks["redis"] = "ok" if await check_redis_health() else "degraded"
    calendar_ok = await get_calendar_client().health_check()
    checks["calendar"] = "ok" if calendar_ok else "failed"
    if not calendar_ok:
        logger.warning("Readiness check: Calendar Agent unreachable")
    return checks


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns 200 if the application is running. Does not check dependencies.",
)
async def health() -> HealthResponse:
    """
    Basic health check.

    Always returns 200 if the application is running.
    Use /health/ready for dependency checks.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description="Checks Redis and Calendar Agent reachability. Returns 503 if the calendar is unavailable.",
    responses={
        200: {"description": "Ready to take calls"},
        503: {"description": "Calendar Agent is unavailable"},
    },
)
async def ready() -> ReadyResponse:
    """
    Readiness probe for load balancers and Kubernetes.

    Bookings need the Calendar Agent; Redis is optional.
    """
    checks = await _dependency_checks()
    all_ok = checks["calendar"] == "ok"

    response = ReadyResponse(
        status="ready" if all_ok else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )

    if not all_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    description="Returns 200 if the process is alive. Used for container restart decisions.",
)
async def live() -> LiveResponse:
    """
    Liveness probe for Kubernetes.

    Always returns 200 if the process is running.
    """
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/detailed",
    response_model=DetailedHealthResponse,
    summary="Detailed health check",
    description="Returns detailed system health. Only available in development.",
    include_in_schema=settings.is_development,
)
async def detailed() -> DetailedHealthResponse:
    """Detailed health check with runtime info. Development only."""
    if not settings.is_development:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found",
        )

    checks = await _dependency_checks()

    # Safe config info (no secrets)
    config = {
        "app_name": settings.app_name,
        "environment": settings.app_env,
        "debug": str(settings.debug),
        "business_timezone": settings.business_timezone,
        "llm_extraction": "enabled" if settings.anthropic_api_key else "fallback only",
        "rate_limit_rpm": str(settings.rate_limit_requests),
    }

    return DetailedHealthResponse(
        status="healthy" if all(v == "ok" for v in checks.values()) else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.app_env,
        uptime_seconds=get_uptime_seconds(),
        active_sessions=get_session_store().count(),
        checks=checks,
        config=config,
    )
