"""
Redis Connection Management

Shared Redis connection for per-tenant rate limiting. Sessions live in
process memory, so Redis holds nothing a turn depends on: every caller of
this module degrades to "allowed" when Redis is unreachable.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from voice_agent.config import settings

logger = logging.getLogger(__name__)

# Namespace so several deployments can share one Redis
APP_PREFIX = "voice-agent:v1:"


class RedisClient:
    """
    Manages the Redis connection as a process-wide singleton.

    A failed connect leaves the client unset; the next call tries again.
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if connection fails
        """
        if cls._client is not None and cls._connected:
            return cls._client

        try:
            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2.0,
                socket_timeout=2.0,
                retry_on_timeout=True,
                retry=Retry(ExponentialBackoff(), retries=2),
            )
            await cls._client.ping()
            cls._connected = True
            logger.info("Redis connection established")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError, OSError) as e:
            logger.warning(f"Redis unavailable: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        """Check if Redis is connected."""
        return cls._connected


async def get_redis() -> Optional[Redis]:
    """
    FastAPI dependency that provides the Redis client.

    Returns None if Redis is unavailable.
    """
    return await RedisClient.get_client()


class RateLimiterStore:
    """
    Fixed-window request counter per tenant.

    Key: voice-agent:v1:ratelimit:{identifier}

    IMPORTANT: Fails OPEN - if Redis is unavailable, requests are ALLOWED.
    A Redis outage must never silence the phone line.
    """

    RATELIMIT_PREFIX = f"{APP_PREFIX}ratelimit:"

    def __init__(
        self,
        redis_client: Optional[Redis],
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        self.redis = redis_client
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window

    def _key(self, identifier: str) -> str:
        """Generate rate limit key with namespace."""
        return f"{self.RATELIMIT_PREFIX}{identifier}"

    async def is_allowed(self, identifier: str) -> tuple[bool, int, int]:
        """
        Count one request against the identifier's window.

        Args:
            identifier: e.g. "tenant:{tenant_id}"

        Returns:
            Tuple of (allowed, remaining, reset_seconds)
        """
        if self.redis is None:
            logger.warning(f"Redis unavailable - rate limiting bypassed for {identifier}")
            return (True, self.max_requests, self.window_seconds)

        try:
            key = self._key(identifier)

            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, self.window_seconds)

            ttl = await self.redis.ttl(key)
            if ttl < 0:
                ttl = self.window_seconds

            remaining = max(0, self.max_requests - current)
            allowed = current <= self.max_requests
            if not allowed:
                logger.info(f"Rate limit exceeded for {identifier}")

            return (allowed, remaining, ttl)

        except RedisError as e:
            logger.error(f"Rate limit check failed for {identifier}: {e} - allowing request")
            return (True, self.max_requests, self.window_seconds)


async def get_rate_limiter_store() -> RateLimiterStore:
    """
    Get RateLimiterStore instance.

    Returns a store even if Redis is unavailable (fails open).
    """
    client = await get_redis()
    return RateLimiterStore(client)


async def check_redis_health() -> bool:
    """
    Check Redis connectivity for readiness probes.

    Returns:
        True if Redis is accessible and responding
    """
    client = await get_redis()
    if client is None:
        return False
    try:
        await client.ping()
        return True
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
