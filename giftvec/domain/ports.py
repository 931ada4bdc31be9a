# giftvec/domain/ports.py
"""
Narrow interfaces the services are constructed with.

Mongo/Redis/OpenAI adapters implement these in production; tests pass
in-memory fakes. Nothing here holds behaviour.
"""
from __future__ import annotations
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from giftvec.domain.models.embedding import ProviderResponse
from giftvec.domain.models.product import (
    EmbeddingStatus,
    HybridSearchResult,
    Product,
    SearchResult,
    TrendingProduct,
)
from giftvec.domain.models.user import (
    Interaction,
    InteractionRecord,
    SimilarUser,
    StoredPreference,
    UserPreferenceProfile,
)

# Uniform draw in [0, 1); injected so diversification can be made deterministic.
RandomSource = Callable[[], float]


class EmbeddingProvider(Protocol):
    async def create_embeddings(self, model: str, inputs: List[str]) -> ProviderResponse: ...


class ProductSearchIndex(Protocol):
    async def find_similar(
        self,
        vector: Sequence[float],
        *,
        threshold: float,
        count: int,
        category: Optional[str] = None,
        price_min: Optional[float] = None,
        price_max: Optional[float] = None,
        search_effort: Optional[int] = None,
    ) -> List[SearchResult]: ...

    async def hybrid_search(
        self,
        text: str,
        vector: Sequence[float],
        *,
        keyword_weight: float,
        semantic_weight: float,
        count: int,
    ) -> List[HybridSearchResult]: ...


class ProductStore(Protocol):
    async def get_vector(self, product_id: str) -> Optional[List[float]]: ...

    async def get_vectors(self, product_ids: Sequence[str]) -> Dict[str, List[float]]: ...

    async def set_vector(self, product_id: str, vector: Sequence[float], *, model: str) -> None: ...

    async def get_by_product_id(self, product_id: str) -> Optional[Product]: ...

    async def get_many_by_product_ids(self, product_ids: Sequence[str]) -> List[Product]: ...

    async def get_products_without_embeddings(self, limit: int) -> List[Product]: ...

    async def get_embedding_status(self) -> EmbeddingStatus: ...

    async def sample_embedded_product_ids(self, limit: int) -> List[str]: ...


class InteractionStore(Protocol):
    async def insert(self, interaction: Interaction) -> None: ...

    async def recent_with_products(
        self,
        user_id: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        require_embedding: bool = False,
    ) -> List[InteractionRecord]: ...

    async def count(self, user_id: str) -> int: ...

    async def trending(
        self,
        *,
        since: datetime,
        limit: int,
        categories: Optional[Sequence[str]] = None,
        price_min: Optional[float] = None,
        price_max: Optional[float] = None,
    ) -> List[TrendingProduct]: ...


class UserProfileStore(Protocol):
    async def get_preference(self, user_id: str) -> Optional[StoredPreference]: ...

    async def set_preference(self, user_id: str, vector: Sequence[float]) -> None: ...

    async def find_similar_users(
        self,
        vector: Sequence[float],
        *,
        exclude_user_id: str,
        threshold: float,
        count: int,
    ) -> List[SimilarUser]: ...


class ProfileCache(Protocol):
    async def get(self, user_id: str) -> Optional[UserPreferenceProfile]: ...

    async def set(self, user_id: str, profile: UserPreferenceProfile, ttl: int) -> None: ...

    async def invalidate(self, user_id: str) -> None: ...
