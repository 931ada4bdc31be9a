# giftvec/domain/services/recommendation_svc.py
"""
Single-pass recommendation pipeline:

  1. load the user's preference profile (personalized requests only)
  2. embed the request context (query, occasion, relationship, interests, age, last turns)
  3. gather candidates from context search and preference search, concurrently
  4. score: preference cosine + bonuses, context similarity + interest bonus
  5. diversify with MMR
  6. truncate and explain
  7. learn from the query in the background

Failures in 1-4 propagate; the background learning step only logs.
"""
from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set
import asyncio
import logging
import random

from giftvec.domain.models.product import SearchResult
from giftvec.domain.models.recommendation import (
    ExplanationFactor,
    RecommendationContext,
    RecommendationExplanation,
    RecommendationOptions,
    RecommendationWithExplanation,
)
from giftvec.domain.models.user import UserPreferenceProfile
from giftvec.domain.ports import InteractionStore, ProductStore, RandomSource
from giftvec.domain.services.constants import (
    CANDIDATE_POOL_FACTOR,
    CATEGORY_BONUS,
    CATEGORY_FACTOR_WEIGHT,
    CONTEXT_FACTOR_THRESHOLD,
    CONTEXT_MATCH_THRESHOLD,
    CONVERSATION_TURNS,
    FALLBACK_REASON,
    INTEREST_FACTOR_WEIGHT,
    INTEREST_KEYWORD_BONUS,
    MAX_EXPLANATION_FACTORS,
    MIN_CONFIDENCE,
    OCCASION_FACTOR_WEIGHT,
    PREFERENCE_FACTOR_THRESHOLD,
    PREFERENCE_WEIGHT,
    PRICE_BONUS,
    PRICE_FACTOR_WEIGHT,
    PRICE_RANGE_SLACK_HIGH,
    PRICE_RANGE_SLACK_LOW,
    QUERY_SNIPPET_CHARS,
    SAME_CATEGORY_FACTOR_WEIGHT,
    SIMILAR_PRODUCTS_LIMIT,
    SIMILAR_PRODUCTS_THRESHOLD,
    TRENDING_CONFIDENCE,
    TRENDING_WINDOW_DAYS,
)
from giftvec.domain.services.diversity import apply_mmr
from giftvec.domain.services.embedding_svc import EmbeddingClient
from giftvec.domain.services.similarity_svc import SearchOptions, SimilaritySearchService
from giftvec.domain.services.user_preference_svc import UserPreferenceService
from giftvec.domain.services.vector_math import cosine_similarity

logger = logging.getLogger(__name__)


def build_context_text(context: RecommendationContext) -> Optional[str]:
    """Join the present context fields in a fixed order; None when nothing is set."""
    parts: List[str] = []
    if context.query:
        parts.append(context.query)
    if context.occasion:
        parts.append(f"Gift for {context.occasion}")
    if context.relationship:
        parts.append(f"For {context.relationship}")
    if context.recipient_interests:
        parts.append(f"Interests: {', '.join(context.recipient_interests)}")
    if context.recipient_age:
        parts.append(f"Age: {context.recipient_age}")
    if context.conversation_history:
        parts.append(". ".join(context.conversation_history[-CONVERSATION_TURNS:]))
    return ". ".join(parts) if parts else None


def matching_interests(context: RecommendationContext, description: Optional[str]) -> List[str]:
    if not context.recipient_interests or not description:
        return []
    text = description.lower()
    return [i for i in context.recipient_interests if i.lower() in text]


def in_price_range(price: float, profile: UserPreferenceProfile, low: float = 1.0, high: float = 1.0) -> bool:
    return profile.price_range.min * low <= price <= profile.price_range.max * high


def _from_result(r: SearchResult) -> RecommendationWithExplanation:
    return RecommendationWithExplanation(
        product_id=r.product_id,
        title=r.title,
        description=r.description,
        price=r.price,
        category=r.category,
        score=r.similarity,
        context_score=r.similarity,
    )


class RecommendationEngine:

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        similarity: SimilaritySearchService,
        preferences: UserPreferenceService,
        products: ProductStore,
        interactions: InteractionStore,
        *,
        random_source: RandomSource = random.random,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.embedding_client = embedding_client
        self.similarity = similarity
        self.preferences = preferences
        self.products = products
        self.interactions = interactions
        self.random_source = random_source
        self._clock = clock
        # strong refs to background learning tasks until they finish
        self._background: Set[asyncio.Task] = set()

    # ----- Public API ------------------------------------------------------

    async def get_recommendations(
        self,
        context: RecommendationContext,
        options: Optional[RecommendationOptions] = None,
    ) -> List[RecommendationWithExplanation]:
        opts = options or RecommendationOptions()
        personalized = bool(context.user_id) and opts.enable_personalization

        profile: Optional[UserPreferenceProfile] = None
        if personalized:
            profile = await self.preferences.get_user_profile(context.user_id)

        context_embedding = await self.build_context_embedding(context)

        candidates = await self._gather_candidates(
            context, context_embedding, opts.limit * CANDIDATE_POOL_FACTOR, personalized
        )
        if not candidates:
            logger.info(f"No candidates for user={context.user_id} query={context.query!r}")
            self._learn_in_background(context)
            return []

        scored = await self._score(candidates, profile, context)

        if opts.enable_diversity and len(scored) > 1:
            ranked = apply_mmr(
                scored,
                opts.diversity_threshold,
                opts.exploration_factor,
                limit=opts.limit,
                random_source=self.random_source,
            )
        else:
            ranked = scored
        top = ranked[:opts.limit]

        if opts.include_explanations:
            for rec in top:
                rec.explanation = self.explain(rec, profile, context)

        self._learn_in_background(context)
        logger.info(f"Generated {len(top)} recommendations from {len(candidates)} candidates")
        return top

    async def get_similar_products(
        self,
        product_id: str,
        context: Optional[RecommendationContext] = None,
        options: Optional[RecommendationOptions] = None,
    ) -> List[RecommendationWithExplanation]:
        """Neighbours of one product, explained relative to it."""
        context = context or RecommendationContext()
        opts = options or RecommendationOptions(limit=SIMILAR_PRODUCTS_LIMIT)
        budget = context.budget

        results = await self.similarity.find_similar_to_product(
            product_id,
            SearchOptions(
                threshold=SIMILAR_PRODUCTS_THRESHOLD,
                count=opts.limit,
                category=context.categories[0] if context.categories else None,
                price_min=budget.min if budget else None,
                price_max=budget.max if budget else None,
            ),
        )
        source = await self.products.get_by_product_id(product_id)
        source_title = source.title if source else "selected product"
        excluded = set(context.exclude_product_ids)

        out: List[RecommendationWithExplanation] = []
        for r in results:
            if r.product_id in excluded:
                continue
            rec = _from_result(r)
            if opts.include_explanations:
                factors = [
                    ExplanationFactor(
                        type="similar_products",
                        description=f"{round(r.similarity * 100)}% similarity match",
                        weight=r.similarity,
                    )
                ]
                if source and r.category and r.category == source.category:
                    factors.append(
                        ExplanationFactor(
                            type="category_match",
                            description=f"Same category: {r.category}",
                            weight=SAME_CATEGORY_FACTOR_WEIGHT,
                        )
                    )
                rec.explanation = RecommendationExplanation(
                    primary_reason=f'Similar to "{source_title}"',
                    factors=factors,
                    confidence=r.similarity,
                )
            out.append(rec)
        return out

    async def get_trending_recommendations(
        self,
        context: Optional[RecommendationContext] = None,
        options: Optional[RecommendationOptions] = None,
    ) -> List[RecommendationWithExplanation]:
        """Most-interacted products over the last week; score is count / max count."""
        context = context or RecommendationContext()
        opts = options or RecommendationOptions()
        budget = context.budget

        trending = await self.interactions.trending(
            since=self._clock() - timedelta(days=TRENDING_WINDOW_DAYS),
            limit=opts.limit + len(context.exclude_product_ids),
            categories=context.categories or None,
            price_min=budget.min if budget else None,
            price_max=budget.max if budget else None,
        )
        excluded = set(context.exclude_product_ids)
        trending = [t for t in trending if t.product.product_id not in excluded][:opts.limit]
        max_count = max([t.interaction_count for t in trending] + [1])

        out: List[RecommendationWithExplanation] = []
        for t in trending:
            score = t.interaction_count / max_count
            p = t.product
            out.append(
                RecommendationWithExplanation(
                    product_id=p.product_id,
                    title=p.title,
                    description=p.description,
                    price=p.price,
                    category=p.category,
                    image_url=p.image_url,
                    score=score,
                    explanation=RecommendationExplanation(
                        primary_reason="Popular this week",
                        factors=[
                            ExplanationFactor(
                                type="trending",
                                description=f"{t.interaction_count} recent interactions",
                                weight=score,
                            )
                        ],
                        confidence=TRENDING_CONFIDENCE,
                    ),
                )
            )
        return out

    async def build_context_embedding(self, context: RecommendationContext) -> Optional[List[float]]:
        text = build_context_text(context)
        if text is None:
            return None
        return (await self.embedding_client.embed_query(text)).embedding

    def explain(
        self,
        rec: RecommendationWithExplanation,
        profile: Optional[UserPreferenceProfile],
        context: RecommendationContext,
    ) -> RecommendationExplanation:
        factors: List[ExplanationFactor] = []

        if profile is not None and rec.preference_score > PREFERENCE_FACTOR_THRESHOLD:
            match = next((c for c in profile.top_categories if c.category == rec.category), None)
            if match is not None:
                factors.append(
                    ExplanationFactor(
                        type="user_history",
                        description=f"Matches your interest in {rec.category}",
                        weight=match.score / 10,
                    )
                )
            if in_price_range(rec.price, profile):
                factors.append(
                    ExplanationFactor(type="price_range", description="In your typical price range", weight=PRICE_FACTOR_WEIGHT)
                )

        if rec.context_score > CONTEXT_FACTOR_THRESHOLD:
            if context.query:
                snippet = context.query[:QUERY_SNIPPET_CHARS]
                if len(context.query) > QUERY_SNIPPET_CHARS:
                    snippet += "..."
                factors.append(
                    ExplanationFactor(
                        type="context_match",
                        description=f'Matches your search for "{snippet}"',
                        weight=rec.context_score,
                    )
                )
            if context.occasion:
                factors.append(
                    ExplanationFactor(
                        type="occasion_match",
                        description=f"Great for {context.occasion}",
                        weight=OCCASION_FACTOR_WEIGHT,
                    )
                )
            interests = matching_interests(context, rec.description)
            if interests:
                factors.append(
                    ExplanationFactor(
                        type="interest_match",
                        description=f"Matches interests: {', '.join(interests)}",
                        weight=INTEREST_FACTOR_WEIGHT,
                    )
                )

        if rec.category and rec.category in context.categories:
            factors.append(
                ExplanationFactor(
                    type="category_match",
                    description=f"In requested category: {rec.category}",
                    weight=CATEGORY_FACTOR_WEIGHT,
                )
            )

        # stable sort: equal weights keep insertion order
        factors.sort(key=lambda f: f.weight, reverse=True)
        return RecommendationExplanation(
            primary_reason=factors[0].description if factors else FALLBACK_REASON,
            factors=factors[:MAX_EXPLANATION_FACTORS],
            confidence=max(rec.preference_score, rec.context_score, MIN_CONFIDENCE),
        )

    async def drain_background(self) -> None:
        """Wait for pending background learning tasks (shutdown / tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ----- Internals -------------------------------------------------------

    async def _gather_candidates(
        self,
        context: RecommendationContext,
        context_embedding: Optional[List[float]],
        pool_size: int,
        personalized: bool,
    ) -> List[SearchResult]:
        sources = []
        if context_embedding is not None:
            budget = context.budget
            sources.append(
                self.similarity.find_similar(
                    context_embedding,
                    SearchOptions(
                        threshold=CONTEXT_MATCH_THRESHOLD,
                        count=pool_size,
                        category=context.categories[0] if context.categories else None,
                        price_min=budget.min if budget else None,
                        price_max=budget.max if budget else None,
                    ),
                )
            )
        if personalized and pool_size // 2 > 0:
            sources.append(self.similarity.personalized_recommendations(context.user_id, pool_size // 2))

        # both sources must finish before scoring; the first failure propagates
        batches = await asyncio.gather(*sources)

        excluded = set(context.exclude_product_ids)
        seen: Set[str] = set()
        out: List[SearchResult] = []
        for batch in batches:
            for r in batch:
                if r.product_id in seen or r.product_id in excluded:
                    continue
                seen.add(r.product_id)
                out.append(r)
        return out

    async def _score(
        self,
        candidates: Sequence[SearchResult],
        profile: Optional[UserPreferenceProfile],
        context: RecommendationContext,
    ) -> List[RecommendationWithExplanation]:
        user_vec = profile.preference_embedding if profile is not None else None
        vectors: Dict[str, List[float]] = {}
        if user_vec:
            vectors = await self.products.get_vectors([c.product_id for c in candidates])

        pref_weight = PREFERENCE_WEIGHT if profile is not None else 0.0
        scored: List[RecommendationWithExplanation] = []
        for c in candidates:
            rec = _from_result(c)

            pref = 0.0
            vec = vectors.get(c.product_id)
            if user_vec and vec:
                pref = cosine_similarity(user_vec, vec)
                if profile.has_category(c.category):
                    pref = min(1.0, pref + CATEGORY_BONUS)
                if in_price_range(c.price, profile, PRICE_RANGE_SLACK_LOW, PRICE_RANGE_SLACK_HIGH):
                    pref = min(1.0, pref + PRICE_BONUS)

            ctx = c.similarity
            hits = len(matching_interests(context, c.description))
            if hits:
                ctx = min(1.0, ctx + hits * INTEREST_KEYWORD_BONUS)

            rec.preference_score = pref
            rec.context_score = ctx
            rec.score = pref * pref_weight + ctx * (1 - pref_weight)
            scored.append(rec)

        scored.sort(key=lambda r: r.score, reverse=True)
        return scored

    def _learn_in_background(self, context: RecommendationContext) -> None:
        if not (context.user_id and context.query):
            return
        task = asyncio.create_task(self.preferences.learn_from_search(context.user_id, context.query))
        self._background.add(task)
        task.add_done_callback(self._on_learn_done)

    def _on_learn_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background learn_from_search failed: {exc}")
