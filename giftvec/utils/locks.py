# giftvec/utils/locks.py
from __future__ import annotations
from typing import Optional
from redis.asyncio import Redis
import logging
import uuid

logger = logging.getLogger(__name__)

# delete only if we still own the key
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RedisLock:
    """
    Single-instance lock using SET NX EX.
    Guards long jobs (catalog backfill) against a second concurrent run.
    """
    def __init__(self, redis: Redis, key: str, ttl: int = 3600):
        self.redis = redis
        self.key = f"lock:{key}"
        self.ttl = ttl
        self._token: Optional[str] = None

    async def acquire(self) -> bool:
        token = uuid.uuid4().hex
        ok = await self.redis.set(self.key, token, nx=True, ex=self.ttl)
        if ok:
            self._token = token
            logger.debug(f"Acquired {self.key} (ttl={self.ttl}s)")
            return True
        return False

    async def release(self) -> None:
        if self._token is None:
            return
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        logger.debug(f"Released {self.key}")
