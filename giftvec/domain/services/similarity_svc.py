# giftvec/domain/services/similarity_svc.py
from __future__ import annotations
from typing import List, Optional, Sequence
import logging

from pydantic import BaseModel, Field

from giftvec.core.exceptions import InvalidEmbedding
from giftvec.domain.models.product import HybridSearchResult, SearchResult
from giftvec.domain.ports import ProductSearchIndex, ProductStore, UserProfileStore
from giftvec.domain.services.constants import (
    DEFAULT_MATCH_COUNT,
    DEFAULT_MATCH_THRESHOLD,
    HYBRID_KEYWORD_WEIGHT,
    HYBRID_MATCH_COUNT,
    HYBRID_SEMANTIC_WEIGHT,
    PERSONALIZED_MATCH_THRESHOLD,
    SELF_MATCH_MARGIN,
)
from giftvec.domain.services.embedding_svc import EmbeddingClient
from giftvec.domain.services.vector_math import cosine_similarity

logger = logging.getLogger(__name__)


class SearchOptions(BaseModel):
    threshold: float = DEFAULT_MATCH_THRESHOLD
    count: int = Field(DEFAULT_MATCH_COUNT, ge=1)
    category: Optional[str] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    # Atlas numCandidates; None uses the repository default
    search_effort: Optional[int] = None


class HybridSearchOptions(BaseModel):
    # Scaling factors on two independent scores; they need not sum to 1
    keyword_weight: float = HYBRID_KEYWORD_WEIGHT
    semantic_weight: float = HYBRID_SEMANTIC_WEIGHT
    count: int = Field(HYBRID_MATCH_COUNT, ge=1)


class SimilaritySearchService:
    """
    Nearest-neighbour and hybrid queries against the product index.
    Every query vector is validated before anything is sent to the datastore.
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        search_index: ProductSearchIndex,
        products: ProductStore,
        profiles: UserProfileStore,
        *,
        self_match_margin: int = SELF_MATCH_MARGIN,
    ):
        self.embedding_client = embedding_client
        self.search_index = search_index
        self.products = products
        self.profiles = profiles
        self.self_match_margin = self_match_margin

    async def find_similar(
        self, embedding: Sequence[float], options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        opts = options or SearchOptions()
        self._require_valid(embedding)
        results = await self.search_index.find_similar(
            embedding,
            threshold=opts.threshold,
            count=opts.count,
            category=opts.category,
            price_min=opts.price_min,
            price_max=opts.price_max,
            search_effort=opts.search_effort,
        )
        logger.debug(f"Found {len(results)} similar products (threshold: {opts.threshold})")
        return results

    async def find_similar_by_text(self, text: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        resp = await self.embedding_client.embed_query(text)
        return await self.find_similar(resp.embedding, options)

    async def find_similar_to_product(
        self, product_id: str, options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        """
        Neighbours of a stored product, never including the product itself.
        Over-fetches by `self_match_margin`; if filtering still leaves fewer than
        `count` results while the index returned a full page, re-fetches once
        with double the page size.
        """
        opts = options or SearchOptions()
        embedding = await self.products.get_vector(product_id)
        if not embedding:
            logger.warning(f"Product {product_id} has no embedding")
            return []

        fetch = opts.count + self.self_match_margin
        for _ in range(2):
            raw = await self.find_similar(embedding, opts.model_copy(update={"count": fetch}))
            results = [r for r in raw if r.product_id != product_id]
            if len(results) >= opts.count or len(raw) < fetch:
                break
            logger.debug(f"Shortfall for {product_id}: {len(results)}/{opts.count}, re-fetching")
            fetch *= 2
        return results[:opts.count]

    async def hybrid_search(
        self,
        query_text: str,
        embedding: Sequence[float],
        options: Optional[HybridSearchOptions] = None,
    ) -> List[HybridSearchResult]:
        opts = options or HybridSearchOptions()
        self._require_valid(embedding)
        results = await self.search_index.hybrid_search(
            query_text,
            embedding,
            keyword_weight=opts.keyword_weight,
            semantic_weight=opts.semantic_weight,
            count=opts.count,
        )
        logger.debug(
            f"Hybrid search returned {len(results)} results "
            f"(keyword: {opts.keyword_weight}, semantic: {opts.semantic_weight})"
        )
        return results

    async def hybrid_search_by_text(
        self, query_text: str, options: Optional[HybridSearchOptions] = None
    ) -> List[HybridSearchResult]:
        resp = await self.embedding_client.embed_query(query_text)
        return await self.hybrid_search(query_text, resp.embedding, options)

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)

    async def personalized_recommendations(self, user_id: str, count: int = 20) -> List[SearchResult]:
        """Products near the user's preference vector, with a lowered threshold."""
        stored = await self.profiles.get_preference(user_id)
        if not stored or not stored.preference_embedding:
            logger.warning(f"User {user_id} has no preference embedding")
            return []
        return await self.find_similar(
            stored.preference_embedding,
            SearchOptions(threshold=PERSONALIZED_MATCH_THRESHOLD, count=count),
        )

    def _require_valid(self, embedding) -> None:
        if not self.embedding_client.validate(embedding):
            raise InvalidEmbedding(
                "Invalid embedding provided",
                expected_dim=self.embedding_client.dimensions,
                actual_dim=len(embedding) if hasattr(embedding, "__len__") else None,
            )
