import asyncio
import logging

from redis.asyncio import Redis

from livequiz.core.config import settings

logger = logging.getLogger(__name__)

_redis: Redis | None = None
_lock = asyncio.Lock()


async def get_redis() -> Redis:
    """
    Shared Redis client for the redis store backend. rediss:// URLs get TLS.
    Pub/sub connections for change feeds are drawn from the same pool.
    """
    global _redis
    async with _lock:
        if _redis is None:
            client = Redis.from_url(
                settings.redis_url,
                decode_responses=True,
                health_check_interval=30,
                socket_connect_timeout=3,
                retry_on_timeout=True,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
            )
            # unreachable server fails the first request, not a later poll
            await client.ping()
            logger.info("connected to redis at %s", client.connection_pool.connection_kwargs.get("host"))
            _redis = client
    return _redis


async def close_redis() -> None:
    global _redis
    client, _redis = _redis, None
    if client is not None:
        await client.aclose()
        logger.info("redis connection closed")
