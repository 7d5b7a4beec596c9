"""Redis connection pool and non-blocking named locks."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
import structlog
from redis.exceptions import LockError

logger = structlog.get_logger()

_pool: redis.Redis | None = None


async def init_redis(url: str) -> None:
    """Initialize the Redis connection pool."""
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis | None:
    """Get the Redis client, or None when Redis was never initialized.

    Locks degrade to process-local guarantees without Redis.
    """
    return _pool


@asynccontextmanager
async def try_lock(client: redis.Redis | None, name: str, timeout: float) -> AsyncIterator[bool]:
    """Try to take a Redis lock without waiting.

    Yields True when the lock is held (or there is no Redis to lock against),
    False when someone else holds it. The lock auto-expires after `timeout`
    seconds so a crashed holder cannot wedge the system.
    """
    if client is None:
        yield True
        return

    lock = client.lock(name, timeout=timeout, blocking=False)
    acquired = await lock.acquire()
    try:
        yield bool(acquired)
    finally:
        if acquired:
            try:
                await lock.release()
            except LockError:
                logger.warning("lock_expired_before_release", lock=name)
