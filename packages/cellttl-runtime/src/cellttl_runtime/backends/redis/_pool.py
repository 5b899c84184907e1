from __future__ import annotations

from typing import TYPE_CHECKING

from cellttl_core.errors import BackendUnavailableError
from cellttl_core.logging import get_logger

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = get_logger("backend.redis")


async def create_pool(redis_url: str) -> Redis:
    """Create and verify an async Redis connection pool.

    Returns a :class:`redis.asyncio.Redis` instance backed by a connection
    pool.  The connection is validated with a ``PING`` before returning.
    """
    from redis.asyncio import Redis as AsyncRedis
    from redis.exceptions import RedisError

    client: Redis = AsyncRedis.from_url(
        redis_url, decode_responses=True,
    )
    try:
        await client.ping()
    except RedisError as exc:
        logger.exception("Failed to connect to Redis at %s", redis_url)
        await client.aclose()
        raise BackendUnavailableError(f"Redis not reachable at {redis_url}") from exc
    logger.info("Connected to Redis at %s", redis_url)
    return client
