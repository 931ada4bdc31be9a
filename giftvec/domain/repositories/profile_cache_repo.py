# giftvec/domain/repositories/profile_cache_repo.py
"""
Read-through cache for preference profiles.
Writers never update an entry in place: they invalidate it and the next read recomputes.
"""
from __future__ import annotations
from collections import OrderedDict
from typing import Callable, Optional, Tuple
import time

from redis.asyncio import Redis

from giftvec.domain.models.user import UserPreferenceProfile
from giftvec.utils.cache import cache_delete, cache_get, cache_key, cache_set


class RedisProfileCache:
    """Shared cache for multi-process deployments."""

    def __init__(self, redis: Redis, prefix: str = "user:pref"):
        self.redis = redis
        self.prefix = prefix

    def key(self, user_id: str) -> str:
        return cache_key(self.prefix, user_id)

    async def get(self, user_id: str) -> Optional[UserPreferenceProfile]:
        data = await cache_get(self.redis, self.key(user_id))
        return UserPreferenceProfile.model_validate(data) if data else None

    async def set(self, user_id: str, profile: UserPreferenceProfile, ttl: int) -> None:
        await cache_set(self.redis, self.key(user_id), profile.model_dump(mode="json"), ex=ttl)

    async def invalidate(self, user_id: str) -> None:
        await cache_delete(self.redis, self.key(user_id))


class InMemoryProfileCache:
    """
    Single-process LRU with per-entry TTL.
    Expired entries are dropped on read; the least recently used entry is
    evicted once `max_entries` is exceeded.
    """

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, UserPreferenceProfile]]" = OrderedDict()

    async def get(self, user_id: str) -> Optional[UserPreferenceProfile]:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        expires_at, profile = entry
        if self._clock() >= expires_at:
            del self._entries[user_id]
            return None
        self._entries.move_to_end(user_id)
        return profile

    async def set(self, user_id: str, profile: UserPreferenceProfile, ttl: int) -> None:
        self._entries[user_id] = (self._clock() + ttl, profile)
        self._entries.move_to_end(user_id)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    async def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._entries)
