"""
Redis health check for the Complisite API.
Redis is optional: it backs the rate limiter when RATE_LIMIT_STORAGE_URI
points at it, and /ready pings it only when REDIS_URL is configured.
"""

import logging

from redis.asyncio import Redis, RedisError

logger = logging.getLogger(__name__)


async def check_redis_health(url: str) -> bool:
    """
    Simple ping-based health check.
    Returns True if Redis is responsive.
    """
    client = Redis.from_url(url, socket_timeout=5, socket_connect_timeout=5)
    try:
        return bool(await client.ping())
    except (RedisError, OSError) as e:
        logger.error(f"Redis health check failed: {e}")
        return False
    finally:
        await client.aclose()
