# giftvec/db/redis.py
import redis.asyncio as redis
from redis.exceptions import RedisError
from giftvec.core.config import Settings
import logging

logger = logging.getLogger(__name__)

redis_client: redis.Redis | None = None


async def connect(settings: Settings) -> redis.Redis | None:
    """
    Connect when REDIS_URL is set. Missing or unreachable Redis is logged and
    leaves the client as None; callers fall back to in-process caches.
    """
    global redis_client
    if not settings.REDIS_URL:
        logger.warning("No REDIS_URL configured, skipping Redis connection")
        redis_client = None
        return None

    try:
        logger.info("Connecting to Redis")
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        await redis_client.ping()
        logger.info("Redis connection successful")
    except (RedisError, OSError) as e:
        logger.warning(f"Failed to connect to Redis: {e}")
        redis_client = None
    return redis_client


async def disconnect():
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis disconnected")


def get_redis() -> redis.Redis | None:
    """None when Redis is not configured or unavailable."""
    return redis_client
