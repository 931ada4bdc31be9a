# giftvec/domain/repositories/vector_cache_repo.py
from __future__ import annotations
from typing import Optional, Sequence
from redis.asyncio import Redis
import hashlib

from giftvec.domain.services.vector_codec import from_vector_string, to_vector_string

"""
Note:
    - This repository is an adapter for caching query embeddings in Redis.
    - No business logic here, just cache access (get/set/invalidate).
    - Product and preference vectors live in MongoDB; only short-lived query vectors go here.
"""

def _stable_hash(value: str) -> str:
    """
    Generate a short, stable hash for a model name or a query string.
    Useful for cache key versioning when the model changes.
    """
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:12]

class VectorCacheRepo:
    """
    Adapter for storing and retrieving query embeddings in Redis.
    Values are stored as the `[v0,v1,...]` vector literal.
    """
    def __init__(self, redis: Redis, prefix: str = "qvec"):
        # Redis client instance and cache key prefix
        self.redis = redis
        self.prefix = prefix

    def key(self, text: str, model: str) -> str:
        """
        Build a unique cache key for a query's vector, based on the normalized text and model.
        """
        return f"{self.prefix}:{_stable_hash(model)}:{_stable_hash(text)}"

    async def get(self, key: str) -> Optional[list[float]]:
        """
        Retrieve the embedding vector from Redis by key.
        Returns None if not found.
        """
        if raw := await self.redis.get(key):
            return from_vector_string(raw)
        return None

    async def set(self, key: str, vector: Sequence[float], ttl: int) -> None:
        """
        Store the embedding vector in Redis under the given key with a TTL.
        """
        await self.redis.set(key, to_vector_string(vector), ex=ttl)

    async def invalidate(self, text: str, model: str) -> int:
        """
        Remove the cached vector for a specific query and model.
        Returns the number of keys deleted (0 or 1).
        """
        return await self.redis.delete(self.key(text, model))
