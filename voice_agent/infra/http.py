"""
Shared HTTP retry policy for collaborator clients.

Transient failures (429/5xx overload, connection errors, timeouts) are retried
with exponential backoff. Anything else is returned to the caller untouched.
"""

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 502, 503, 504}


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    max_attempts: int = 3,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying transient failures.

    Args:
        client: Shared async client
        method: HTTP method
        url: Path relative to the client's base_url
        max_attempts: Total attempts including the first one
        **kwargs: Passed through to client.request

    Returns:
        The last response received (may still carry a retryable status)

    Raises:
        httpx.HTTPError: If the final attempt fails at the transport level
    """
    for attempt in range(max_attempts):
        is_last = attempt == max_attempts - 1
        wait_time = 2 ** attempt

        try:
            response = await client.request(method, url, **kwargs)
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            if is_last:
                raise
            logger.warning(
                f"{method} {url} failed ({e.__class__.__name__}), "
                f"retrying in {wait_time}s (attempt {attempt + 1})"
            )
            await asyncio.sleep(wait_time)
            continue

        if response.status_code in RETRYABLE_STATUS_CODES and not is_last:
            logger.warning(
                f"{method} {url} returned {response.status_code}, "
                f"retrying in {wait_time}s (attempt {attempt + 1})"
            )
            await asyncio.sleep(wait_time)
            continue

        return response

    # Unreachable with max_attempts >= 1
    raise httpx.HTTPError(f"{method} {url}: no attempts made")
