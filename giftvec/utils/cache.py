# giftvec/utils/cache.py
import json
import logging
from typing import Any, Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


def cache_key(prefix: str, *parts: str) -> str:
    return ":".join((prefix, *parts))


async def cache_get(redis: Redis, key: str) -> Optional[Any]:
    """JSON value stored at key. An undecodable entry is dropped and reads as a miss."""
    val = await redis.get(key)
    if not val:
        return None
    try:
        return json.loads(val)
    except ValueError:
        logger.warning(f"Dropping undecodable cache entry {key}")
        await redis.delete(key)
        return None


async def cache_set(redis: Redis, key: str, value: Any, ex: int = 60) -> None:
    await redis.set(key, json.dumps(value, separators=(",", ":")), ex=ex)


async def cache_delete(redis: Redis, key: str) -> int:
    return await redis.delete(key)
