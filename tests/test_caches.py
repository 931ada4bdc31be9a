import asyncio

from conftest import DIM, FakeProvider, NOW
from giftvec.domain.models.user import UserPreferenceProfile
from giftvec.domain.repositories.profile_cache_repo import InMemoryProfileCache, RedisProfileCache
from giftvec.domain.repositories.vector_cache_repo import VectorCacheRepo
from giftvec.domain.services.embedding_svc import EmbeddingClient
from giftvec.utils.locks import RedisLock


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    async def eval(self, script, numkeys, key, token):
        # compare-and-delete, as the lock release script does
        if self.store.get(key) == token:
            return await self.delete(key)
        return 0


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def profile(user_id):
    return UserPreferenceProfile(user_id=user_id, last_updated=NOW, preference_embedding=[1.0, 0.0, 0.0, 0.0])


def test_in_memory_cache_expires_entries():
    clock = Clock()
    cache = InMemoryProfileCache(clock=clock)
    asyncio.run(cache.set("u1", profile("u1"), ttl=10))

    clock.now = 9.9
    assert asyncio.run(cache.get("u1")).user_id == "u1"
    clock.now = 10.0
    assert asyncio.run(cache.get("u1")) is None
    assert len(cache) == 0


def test_in_memory_cache_evicts_least_recently_used():
    cache = InMemoryProfileCache(max_entries=2)
    asyncio.run(cache.set("a", profile("a"), ttl=60))
    asyncio.run(cache.set("b", profile("b"), ttl=60))
    asyncio.run(cache.get("a"))
    asyncio.run(cache.set("c", profile("c"), ttl=60))

    assert asyncio.run(cache.get("b")) is None
    assert asyncio.run(cache.get("a")) is not None
    assert asyncio.run(cache.get("c")) is not None


def test_redis_profile_cache_round_trip_and_invalidate():
    redis = FakeRedis()
    cache = RedisProfileCache(redis)
    asyncio.run(cache.set("u1", profile("u1"), ttl=1800))

    assert redis.ttls["user:pref:u1"] == 1800
    assert asyncio.run(cache.get("u1")) == profile("u1")
    asyncio.run(cache.invalidate("u1"))
    assert asyncio.run(cache.get("u1")) is None


def test_redis_profile_cache_drops_undecodable_entry():
    redis = FakeRedis()
    redis.store["user:pref:u1"] = "{not json"
    cache = RedisProfileCache(redis)

    assert asyncio.run(cache.get("u1")) is None
    assert "user:pref:u1" not in redis.store


def test_query_vector_cache_skips_provider_on_hit():
    redis = FakeRedis()
    provider = FakeProvider()
    client = EmbeddingClient(provider, dimensions=DIM, query_cache=VectorCacheRepo(redis), query_cache_ttl=60)

    first = asyncio.run(client.embed_query("Teapot"))
    second = asyncio.run(client.embed_query("  teapot"))

    assert second.embedding == first.embedding
    assert second.tokens_used == 0
    assert len(provider.calls) == 1
    key = VectorCacheRepo(redis).key("teapot", client.model)
    assert redis.store[key].startswith("[")
    assert asyncio.run(VectorCacheRepo(redis).invalidate("teapot", client.model)) == 1


def test_lock_blocks_second_holder_until_released():
    redis = FakeRedis()
    first = RedisLock(redis, "giftvec:backfill", ttl=120)
    second = RedisLock(redis, "giftvec:backfill", ttl=120)

    assert asyncio.run(first.acquire()) is True
    assert redis.ttls["lock:giftvec:backfill"] == 120
    assert asyncio.run(second.acquire()) is False

    asyncio.run(second.release())
    assert "lock:giftvec:backfill" in redis.store

    asyncio.run(first.release())
    assert asyncio.run(second.acquire()) is True


def test_lock_release_keeps_key_taken_over_by_another_holder():
    redis = FakeRedis()
    lock = RedisLock(redis, "job")
    asyncio.run(lock.acquire())
    redis.store["lock:job"] = "someone-else"

    asyncio.run(lock.release())

    assert redis.store["lock:job"] == "someone-else"
