"""
Rate Limiting

Per-tenant fixed-window rate limiting with a Redis backend, applied as a
FastAPI dependency on the turn endpoint. Fails open when Redis is down.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, Response, status

from voice_agent.config import settings
from voice_agent.infra.redis import RateLimiterStore, get_rate_limiter_store

logger = logging.getLogger(__name__)

# Header names
HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"


def get_tenant_id(
    x_tenant_id: Optional[str] = Header(
        default=None,
        alias="X-Tenant-ID",
        description="Tenant identifier (defaults to the configured default tenant)",
    ),
) -> str:
    """Tenant for the request, from the X-Tenant-ID header."""
    return (x_tenant_id or "").strip() or settings.default_tenant_id


def add_rate_limit_headers(response: Response, limit: int, remaining: int, reset_seconds: int) -> None:
    """Add rate limit headers to response."""
    response.headers[HEADER_LIMIT] = str(limit)
    response.headers[HEADER_REMAINING] = str(remaining)
    response.headers[HEADER_RESET] = str(reset_seconds)


async def require_rate_limit(
    request: Request,
    response: Response,
    tenant_id: str = Depends(get_tenant_id),
    store: RateLimiterStore = Depends(get_rate_limiter_store),
) -> None:
    """
    FastAPI dependency that enforces the per-tenant limit.

    Raises HTTPException 429 if the tenant's window is used up.

    Usage:
        @router.post("/turn", dependencies=[Depends(require_rate_limit)])
        async def turn(...):
            ...
    """
    allowed, remaining, reset_seconds = await store.is_allowed(f"tenant:{tenant_id}")
    limit = store.max_requests

    if not allowed:
        client_ip = request.client.host if request.client else "unknown"
        logger.warning(
            f"Rate limit exceeded | Tenant: {tenant_id} | Limit: {limit} | "
            f"IP: {client_ip} | Path: {request.url.path}"
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Rate limit exceeded",
                "limit": limit,
                "retry_after": reset_seconds,
            },
            headers={
                HEADER_LIMIT: str(limit),
                HEADER_REMAINING: "0",
                HEADER_RESET: str(reset_seconds),
                HEADER_RETRY_AFTER: str(reset_seconds),
            },
        )

    add_rate_limit_headers(response, limit, remaining, reset_seconds)
