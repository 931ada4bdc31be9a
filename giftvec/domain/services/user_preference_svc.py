# giftvec/domain/services/user_preference_svc.py
"""
Aggregates a user's interaction history into a single preference vector.

weight(interaction) = type_weight * 2^(-age_days / half_life_days)
preference          = normalize(sum(weight * embedding) / sum(weight))

Every write path invalidates the cached profile; the next read recomputes it.
"""
from __future__ import annotations
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
import logging

from redis.exceptions import RedisError

from giftvec.domain.models.user import (
    CategoryScore,
    Interaction,
    InteractionRecord,
    InteractionType,
    PriceRange,
    SimilarUser,
    UserPreferenceProfile,
)
from giftvec.domain.ports import InteractionStore, ProfileCache, UserProfileStore
from giftvec.domain.services.constants import (
    CATEGORY_SCORE_WEIGHTS,
    DEFAULT_INTERACTION_WEIGHT,
    INTENTFUL_INTERACTIONS,
    INTERACTION_WEIGHTS,
    PROFILE_SCAN_LIMIT,
    SEARCH_BLEND_WEIGHT,
    TOP_CATEGORY_COUNT,
)
from giftvec.domain.services.embedding_svc import EmbeddingClient
from giftvec.domain.services.vector_math import blend, normalize, time_decay, weighted_mean

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(ts: datetime) -> datetime:
    # Mongo hands back naive UTC datetimes unless tz_aware is set on the client
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


class UserPreferenceService:

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        interactions: InteractionStore,
        profiles: UserProfileStore,
        cache: ProfileCache,
        *,
        half_life_days: float = 30,
        window_days: int = 90,
        max_interactions: int = 100,
        cache_ttl: int = 1800,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.embedding_client = embedding_client
        self.interactions = interactions
        self.profiles = profiles
        self.cache = cache
        self.half_life_days = half_life_days
        self.window_days = window_days
        self.max_interactions = max_interactions
        self.cache_ttl = cache_ttl
        self._clock = clock

    async def record_interaction(self, interaction: Interaction) -> None:
        """Append to the interaction log. Failures are logged, never raised."""
        try:
            await self.interactions.insert(interaction)
            await self.cache.invalidate(interaction.user_id)
            logger.debug(f"Recorded {interaction.interaction_type.value} interaction for user {interaction.user_id}")
        except Exception as e:
            logger.error(f"Failed to record interaction for user {interaction.user_id}: {e}")

    def preference_weight(self, record: InteractionRecord, now: Optional[datetime] = None) -> float:
        now = now or self._clock()
        age_days = (now - _aware(record.created_at)).total_seconds() / SECONDS_PER_DAY
        type_weight = INTERACTION_WEIGHTS.get(record.interaction_type, DEFAULT_INTERACTION_WEIGHT)
        return type_weight * time_decay(age_days, self.half_life_days)

    async def update_user_preferences(self, user_id: str) -> Optional[List[float]]:
        """
        Recompute and persist the preference vector from the recent window.
        Returns the stored vector, or None when no interaction qualified.
        """
        now = self._clock()
        records = await self.interactions.recent_with_products(
            user_id,
            since=now - timedelta(days=self.window_days),
            limit=self.max_interactions,
            require_embedding=True,
        )
        records = [r for r in records if r.embedding]
        if not records:
            logger.info(f"No interactions with embeddings found for user {user_id}")
            return None

        mean = weighted_mean([r.embedding for r in records], [self.preference_weight(r, now) for r in records])
        if mean is None:
            logger.info(f"Interactions for user {user_id} carry no weight; preference unchanged")
            return None

        vector = normalize(mean)
        await self.profiles.set_preference(user_id, vector)
        await self._invalidate(user_id)
        logger.info(f"Updated preference embedding for user {user_id} from {len(records)} interactions")
        return vector

    async def get_user_profile(self, user_id: str) -> UserPreferenceProfile:
        try:
            cached = await self.cache.get(user_id)
        except RedisError as e:
            logger.warning(f"Profile cache read failed for user {user_id}: {e}")
            cached = None
        if cached is not None:
            return cached

        stored = await self.profiles.get_preference(user_id)
        count = await self.interactions.count(user_id)
        records = await self.interactions.recent_with_products(user_id, limit=PROFILE_SCAN_LIMIT)

        profile = UserPreferenceProfile(
            user_id=user_id,
            preference_embedding=stored.preference_embedding if stored else None,
            interaction_count=count,
            last_updated=(stored.updated_at if stored and stored.updated_at else self._clock()),
            top_categories=self._top_categories(records),
            price_range=self._price_range(records),
        )
        try:
            await self.cache.set(user_id, profile, self.cache_ttl)
        except RedisError as e:
            logger.warning(f"Profile cache write failed for user {user_id}: {e}")
        return profile

    async def learn_from_search(self, user_id: str, query: str) -> List[float]:
        """
        Nudge the preference vector 20% toward the query embedding; the query
        becomes the initial preference when the user has none yet.
        """
        query_vec = (await self.embedding_client.embed_query(query)).embedding
        stored = await self.profiles.get_preference(user_id)

        if stored and stored.preference_embedding:
            vector = blend(stored.preference_embedding, query_vec, SEARCH_BLEND_WEIGHT)
        else:
            vector = normalize(query_vec)

        await self.profiles.set_preference(user_id, vector)
        await self._invalidate(user_id)
        await self.record_interaction(
            Interaction(
                user_id=user_id,
                interaction_type=InteractionType.SEARCH,
                timestamp=self._clock(),
                search_query=query,
            )
        )
        return vector

    async def find_similar_users(self, user_id: str, threshold: float = 0.7, count: int = 10) -> List[SimilarUser]:
        stored = await self.profiles.get_preference(user_id)
        if not stored or not stored.preference_embedding:
            return []
        return await self.profiles.find_similar_users(
            stored.preference_embedding,
            exclude_user_id=user_id,
            threshold=threshold,
            count=count,
        )

    async def _invalidate(self, user_id: str) -> None:
        # the stored vector is already written; a stale entry expires with its TTL
        try:
            await self.cache.invalidate(user_id)
        except RedisError as e:
            logger.error(f"Profile cache invalidation failed for user {user_id}: {e}")

    @staticmethod
    def _top_categories(records: List[InteractionRecord]) -> List[CategoryScore]:
        scores: Dict[str, float] = defaultdict(float)
        for r in records:
            if r.category:
                scores[r.category] += CATEGORY_SCORE_WEIGHTS.get(r.interaction_type, DEFAULT_INTERACTION_WEIGHT)
        ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)[:TOP_CATEGORY_COUNT]
        return [CategoryScore(category=c, score=s) for c, s in ranked]

    @staticmethod
    def _price_range(records: List[InteractionRecord]) -> PriceRange:
        prices = [r.price for r in records if r.interaction_type in INTENTFUL_INTERACTIONS and r.price is not None]
        if not prices:
            return PriceRange()
        return PriceRange(min=min(prices), max=max(prices), avg=sum(prices) / len(prices))
