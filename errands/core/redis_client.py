"""
Redis Client - async singleton behind the per-runner write locks.

Only errands.core.locks talks to Redis: runner_lock:<runner_id> keys are
taken with SET NX PX and released by redis-py's Lua compare-and-delete.
Socket timeouts are bounded so an unreachable Redis turns into a failed
lock acquisition instead of a request that never returns.
"""
import asyncio
from urllib.parse import urlparse

import redis.asyncio as aioredis

from errands.core.config import settings
from errands.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None
_init_lock = asyncio.Lock()


def _mask_redis_url(url: str) -> str:
    """redis://:secret@host:6379/0 -> redis://:****@host:6379/0"""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "redis://****"
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url


def _create_client() -> aioredis.Redis:
    timeout = settings.REDIS_SOCKET_TIMEOUT_SECONDS
    return aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )


async def get_redis() -> aioredis.Redis:
    """Return the lock client, connecting and pinging it on first use"""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _init_lock:
        if _redis_client is not None:
            return _redis_client

        client = _create_client()
        await client.ping()
        _redis_client = client
        logger.info("Runner lock backend connected", extra_data={
            "url": _mask_redis_url(settings.REDIS_URL),
            "socket_timeout_seconds": settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        })
    return _redis_client


async def close_redis() -> None:
    """Drop the client; API shutdown and every Celery task call this before their loop closes"""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Runner lock backend disconnected")
