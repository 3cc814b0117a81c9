"""
Per-Runner Write Lock

Every write that touches a runner's transactions or balance runs inside
runner_lock(runner_id). The lock is redis-py's Lock: SET NX PX with a
random owner token to acquire, a Lua compare-and-delete to release. It
serialises writers across API workers and Celery processes; the row-level
SELECT ... FOR UPDATE inside the critical section remains the source of
truth.
"""
from contextlib import asynccontextmanager

from redis.asyncio.lock import Lock
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError, LockNotOwnedError
from redis.exceptions import TimeoutError as RedisTimeoutError

from errands.core.config import settings
from errands.core.exceptions import LockTimeoutError
from errands.core.logging import get_logger
from errands.core.redis_client import get_redis

logger = get_logger(__name__)

_RUNNER_LOCK_PREFIX = "runner_lock"


def runner_lock_key(runner_id: int) -> str:
    return f"{_RUNNER_LOCK_PREFIX}:{runner_id}"


async def acquire_runner_lock(
    runner_id: int,
    timeout_seconds: float | None = None,
    ttl_seconds: int | None = None,
) -> Lock:
    """
    Acquire the runner's lock, polling until the timeout.

    Returns:
        The held Lock, pass it to release_runner_lock

    Raises:
        LockTimeoutError: another operation held the lock for the whole wait,
            or Redis could not be reached
    """
    timeout = settings.RUNNER_LOCK_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    try:
        redis = await get_redis()
        lock = redis.lock(
            runner_lock_key(runner_id),
            timeout=ttl_seconds or settings.RUNNER_LOCK_TTL_SECONDS,
            sleep=settings.RUNNER_LOCK_POLL_INTERVAL_SECONDS,
            blocking_timeout=timeout,
            thread_local=False,
        )
        acquired = await lock.acquire()
    except (LockError, RedisConnectionError, RedisTimeoutError) as e:
        logger.warning(
            "Runner lock acquisition failed",
            extra_data={"runner_id": runner_id, "error": str(e)},
        )
        raise LockTimeoutError(runner_id, timeout)

    if not acquired:
        logger.warning(
            "Runner lock timeout",
            extra_data={"runner_id": runner_id, "timeout_seconds": timeout},
        )
        raise LockTimeoutError(runner_id, timeout)
    return lock


async def release_runner_lock(runner_id: int, lock: Lock) -> None:
    """Release the lock only if this owner still holds it (it may have expired and been re-taken)"""
    try:
        await lock.release()
    except LockNotOwnedError:
        logger.warning(
            "Runner lock expired before release",
            extra_data={"runner_id": runner_id},
        )
    except (RedisConnectionError, RedisTimeoutError) as e:
        # The key still expires after RUNNER_LOCK_TTL_SECONDS
        logger.error(
            "Runner lock release failed",
            extra_data={"runner_id": runner_id, "error": str(e)},
        )


@asynccontextmanager
async def runner_lock(runner_id: int, timeout_seconds: float | None = None):
    """Critical section for all writes touching one runner"""
    lock = await acquire_runner_lock(runner_id, timeout_seconds=timeout_seconds)
    try:
        yield
    finally:
        await release_runner_lock(runner_id, lock)
