# giftvec/core/container.py
"""
Composition root: opens Mongo/Redis, builds every adapter and service from
Settings, and closes the connections on exit.
"""
from __future__ import annotations
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from redis.asyncio import Redis

from giftvec.core.config import Settings, get_settings
from giftvec.db import mongo, redis as r
from giftvec.domain.models.batch import BatchOptions
from giftvec.domain.ports import ProfileCache
from giftvec.domain.repositories.interaction_repo import InteractionRepo
from giftvec.domain.repositories.product_repo import ProductRepo
from giftvec.domain.repositories.product_search_repo import ProductSearchRepo
from giftvec.domain.repositories.profile_cache_repo import InMemoryProfileCache, RedisProfileCache
from giftvec.domain.repositories.user_profile_repo import UserProfileRepo
from giftvec.domain.repositories.vector_cache_repo import VectorCacheRepo
from giftvec.domain.services.batch_embedding_svc import BatchEmbeddingPipeline
from giftvec.domain.services.benchmark_svc import BenchmarkHarness
from giftvec.domain.services.embedding_svc import EmbeddingClient, OpenAIEmbeddingProvider
from giftvec.domain.services.recommendation_svc import RecommendationEngine
from giftvec.domain.services.similarity_svc import SimilaritySearchService
from giftvec.domain.services.user_preference_svc import UserPreferenceService


@dataclass
class Container:
    settings: Settings
    redis: Optional[Redis]
    products: ProductRepo
    interactions: InteractionRepo
    embedding: EmbeddingClient
    similarity: SimilaritySearchService
    preferences: UserPreferenceService
    recommendations: RecommendationEngine
    batch: BatchEmbeddingPipeline
    benchmark: BenchmarkHarness

    def batch_options(self, **overrides) -> BatchOptions:
        opts = BatchOptions(
            batch_size=self.settings.batch_size,
            concurrency=self.settings.batch_concurrency,
            batch_delay_s=self.settings.batch_delay_s,
        )
        for k, v in overrides.items():
            setattr(opts, k, v)
        return opts


def build_container(settings: Settings, db, redis: Optional[Redis]) -> Container:
    provider = (
        OpenAIEmbeddingProvider(settings.OPENAI_API_KEY, timeout_s=settings.openai_timeout_s)
        if settings.OPENAI_API_KEY
        else None
    )
    embedding = EmbeddingClient(
        provider,
        model=settings.OPENAI_EMBEDDING_MODEL,
        dimensions=settings.EMBEDDING_DIMENSIONS,
        max_batch_size=settings.embedding_max_batch_size,
        max_retries=settings.embedding_max_retries,
        retry_base_delay_s=settings.embedding_retry_base_delay_s,
        query_cache=VectorCacheRepo(redis, prefix=settings.vector_cache_prefix) if redis is not None else None,
        query_cache_ttl=settings.vector_cache_ttl,
    )

    products = ProductRepo(db)
    search_index = ProductSearchRepo(
        db,
        vector_index=settings.product_vector_index,
        text_index=settings.product_text_index,
    )
    interactions = InteractionRepo(db)
    profiles = UserProfileRepo(db, vector_index=settings.profile_vector_index)

    cache: ProfileCache
    if redis is not None:
        cache = RedisProfileCache(redis, prefix=settings.preference_cache_prefix)
    else:
        cache = InMemoryProfileCache(max_entries=settings.preference_cache_max_entries)

    similarity = SimilaritySearchService(embedding, search_index, products, profiles)
    preferences = UserPreferenceService(
        embedding,
        interactions,
        profiles,
        cache,
        half_life_days=settings.preference_half_life_days,
        window_days=settings.preference_window_days,
        max_interactions=settings.preference_max_interactions,
        cache_ttl=settings.preference_cache_ttl,
    )
    return Container(
        settings=settings,
        redis=redis,
        products=products,
        interactions=interactions,
        embedding=embedding,
        similarity=similarity,
        preferences=preferences,
        recommendations=RecommendationEngine(embedding, similarity, preferences, products, interactions),
        batch=BatchEmbeddingPipeline(embedding, products, scan_limit=settings.backfill_scan_limit),
        benchmark=BenchmarkHarness(embedding, similarity, products),
    )


@asynccontextmanager
async def open_container(settings: Optional[Settings] = None) -> AsyncIterator[Container]:
    settings = settings or get_settings()
    db = await mongo.connect(settings)
    redis = await r.connect(settings)
    container = build_container(settings, db, redis)
    try:
        yield container
    finally:
        await container.recommendations.drain_background()
        await r.disconnect()
        await mongo.disconnect()
