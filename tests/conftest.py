"""
Pytest fixtures and in-memory fakes for every port.
Vectors are 4-dimensional throughout.
"""
from __future__ import annotations
import asyncio
import random
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from giftvec.core.exceptions import ProviderStatusError, StorageFailure
from giftvec.domain.models.embedding import ProviderEmbedding, ProviderResponse
from giftvec.domain.models.product import EmbeddingStatus, HybridSearchResult, Product, SearchResult, TrendingProduct
from giftvec.domain.models.user import Interaction, InteractionRecord, SimilarUser, StoredPreference
from giftvec.domain.repositories.profile_cache_repo import InMemoryProfileCache
from giftvec.domain.services.embedding_svc import EmbeddingClient
from giftvec.domain.services.similarity_svc import SimilaritySearchService
from giftvec.domain.services.user_preference_svc import UserPreferenceService
from giftvec.domain.services.vector_math import cosine_similarity

DIM = 4
NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def text_vector(text: str) -> List[float]:
    """Deterministic, non-zero vector for a text."""
    n = len(text)
    return [1.0, float(n % 5), 0.5, float(n % 3) / 2]


class FakeProvider:
    """
    Embedding provider double.
      - shuffles response items when `shuffle` is set
      - raises ProviderStatusError for each code queued in `failures`
      - tracks concurrent calls when `delay` > 0
    """

    def __init__(self, *, shuffle: bool = False, failures: Sequence[int] = (), vectors: Optional[Dict[str, List[float]]] = None,
                 delay: float = 0.0, tokens_per_text: int = 5):
        self.shuffle = shuffle
        self.failures = list(failures)
        self.vectors = vectors or {}
        self.delay = delay
        self.tokens_per_text = tokens_per_text
        self.calls: List[List[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def create_embeddings(self, model: str, inputs: List[str]) -> ProviderResponse:
        self.calls.append(list(inputs))
        if self.failures:
            raise ProviderStatusError(self.failures.pop(0), "simulated failure")
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            data = [
                ProviderEmbedding(index=i, embedding=self.vectors.get(t, text_vector(t)))
                for i, t in enumerate(inputs)
            ]
            if self.shuffle:
                random.Random(7).shuffle(data)
                data.reverse()
            return ProviderResponse(data=data, total_tokens=self.tokens_per_text * len(inputs))
        finally:
            self.in_flight -= 1


class FakeCatalog:
    """ProductSearchIndex + ProductStore over dicts."""

    def __init__(self):
        self.products: Dict[str, Product] = {}
        self.vectors: Dict[str, List[float]] = {}
        self.models: Dict[str, str] = {}
        self.fail_writes: set = set()
        self.search_calls: List[dict] = []

    def add(self, product_id: str, vector: Optional[List[float]] = None, **fields) -> Product:
        fields.setdefault("title", f"Product {product_id}")
        p = Product(product_id=product_id, **fields)
        self.products[product_id] = p
        if vector is not None:
            self.vectors[product_id] = list(vector)
        return p

    # --- ProductSearchIndex ---

    async def find_similar(self, vector, *, threshold, count, category=None, price_min=None, price_max=None,
                           search_effort=None) -> List[SearchResult]:
        self.search_calls.append({"count": count, "threshold": threshold, "category": category,
                                  "price_min": price_min, "price_max": price_max, "search_effort": search_effort})
        scored = []
        for pid, vec in self.vectors.items():
            p = self.products[pid]
            if not p.is_active:
                continue
            if category is not None and p.category != category:
                continue
            if price_min is not None and p.price < price_min:
                continue
            if price_max is not None and p.price > price_max:
                continue
            sim = cosine_similarity(vector, vec)
            if sim > threshold:
                scored.append(SearchResult(product_id=pid, title=p.title, description=p.description,
                                           price=p.price, category=p.category, similarity=sim))
        scored.sort(key=lambda r: r.similarity, reverse=True)
        return scored[:count]

    async def hybrid_search(self, text, vector, *, keyword_weight, semantic_weight, count) -> List[HybridSearchResult]:
        words = set(text.lower().split())
        out = []
        for pid, vec in self.vectors.items():
            p = self.products[pid]
            kw = 1.0 if words & set(p.title.lower().split()) else 0.0
            sem = cosine_similarity(vector, vec)
            out.append(HybridSearchResult(product_id=pid, title=p.title, price=p.price, category=p.category,
                                          keyword_score=kw, semantic_score=sem,
                                          combined_score=kw * keyword_weight + sem * semantic_weight))
        out.sort(key=lambda r: r.combined_score, reverse=True)
        return out[:count]

    # --- ProductStore ---

    async def get_vector(self, product_id):
        return self.vectors.get(product_id)

    async def get_vectors(self, product_ids):
        return {pid: self.vectors[pid] for pid in product_ids if pid in self.vectors}

    async def set_vector(self, product_id, vector, *, model):
        if product_id in self.fail_writes:
            raise StorageFailure(f"write failed for {product_id}", entity_id=product_id)
        self.vectors[product_id] = list(vector)
        self.models[product_id] = model

    async def get_by_product_id(self, product_id):
        return self.products.get(product_id)

    async def get_many_by_product_ids(self, product_ids):
        return [self.products[pid] for pid in product_ids if pid in self.products]

    async def get_products_without_embeddings(self, limit):
        missing = [p for pid, p in self.products.items() if p.is_active and pid not in self.vectors]
        return missing[:limit]

    async def get_embedding_status(self):
        return EmbeddingStatus(total_products=len(self.products), products_with_embedding=len(self.vectors))

    async def sample_embedded_product_ids(self, limit):
        return list(self.vectors)[:limit]


class FakeInteractionStore:
    def __init__(self, catalog: FakeCatalog):
        self.catalog = catalog
        self.events: List[Interaction] = []
        self.fail = False

    async def insert(self, interaction):
        if self.fail:
            raise StorageFailure("insert failed", entity_id=interaction.user_id)
        self.events.append(interaction)

    async def recent_with_products(self, user_id, *, since=None, limit=None, require_embedding=False):
        rows = []
        for e in sorted(self.events, key=lambda e: e.timestamp, reverse=True):
            if e.user_id != user_id or e.product_id is None:
                continue
            if since is not None and e.timestamp <= since:
                continue
            p = self.catalog.products.get(e.product_id)
            if p is None:
                continue
            vec = self.catalog.vectors.get(e.product_id)
            if require_embedding and vec is None:
                continue
            rows.append(InteractionRecord(product_id=e.product_id, interaction_type=e.interaction_type.value,
                                          created_at=e.timestamp, category=p.category, price=p.price, embedding=vec))
        return rows[:limit] if limit else rows

    async def count(self, user_id):
        return sum(1 for e in self.events if e.user_id == user_id)

    async def trending(self, *, since, limit, categories=None, price_min=None, price_max=None):
        counts: Dict[str, int] = {}
        for e in self.events:
            if e.product_id and e.timestamp > since:
                counts[e.product_id] = counts.get(e.product_id, 0) + 1
        out = []
        for pid, n in sorted(counts.items(), key=lambda kv: kv[1], reverse=True):
            p = self.catalog.products.get(pid)
            if p is None or pid not in self.catalog.vectors:
                continue
            if categories and p.category not in categories:
                continue
            if price_min is not None and p.price < price_min:
                continue
            if price_max is not None and p.price > price_max:
                continue
            out.append(TrendingProduct(product=p, interaction_count=n))
        return out[:limit]


class FakeProfileStore:
    def __init__(self):
        self.prefs: Dict[str, StoredPreference] = {}

    async def get_preference(self, user_id):
        return self.prefs.get(user_id)

    async def set_preference(self, user_id, vector):
        self.prefs[user_id] = StoredPreference(user_id=user_id, preference_embedding=list(vector), updated_at=NOW)

    async def find_similar_users(self, vector, *, exclude_user_id, threshold, count):
        out = []
        for uid, pref in self.prefs.items():
            if uid == exclude_user_id or not pref.preference_embedding:
                continue
            sim = cosine_similarity(vector, pref.preference_embedding)
            if sim > threshold:
                out.append(SimilarUser(user_id=uid, similarity=sim))
        out.sort(key=lambda u: u.similarity, reverse=True)
        return out[:count]


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def embedding_client(provider):
    return EmbeddingClient(provider, dimensions=DIM, max_batch_size=3, retry_base_delay_s=0)


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def interactions(catalog):
    return FakeInteractionStore(catalog)


@pytest.fixture
def profiles():
    return FakeProfileStore()


@pytest.fixture
def profile_cache():
    return InMemoryProfileCache(max_entries=100)


@pytest.fixture
def similarity(embedding_client, catalog, profiles):
    return SimilaritySearchService(embedding_client, catalog, catalog, profiles)


@pytest.fixture
def preferences(embedding_client, interactions, profiles, profile_cache):
    return UserPreferenceService(embedding_client, interactions, profiles, profile_cache, clock=lambda: NOW)
