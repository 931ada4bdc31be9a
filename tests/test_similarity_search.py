import asyncio

import pytest

from giftvec.core.exceptions import InvalidEmbedding
from giftvec.domain.services.similarity_svc import HybridSearchOptions, SearchOptions, SimilaritySearchService


def seed(catalog):
    catalog.add("src", [1.0, 0.0, 0.0, 0.0], category="Books", price=20)
    catalog.add("a", [0.99, 0.1, 0.0, 0.0], category="Books", price=25)
    catalog.add("b", [0.95, 0.3, 0.0, 0.0], category="Toys", price=80)
    catalog.add("c", [0.9, 0.4, 0.1, 0.0], category="Books", price=200)
    catalog.add("far", [0.0, 0.0, 0.0, 1.0], category="Books", price=10)


def test_find_similar_to_product_never_returns_source(similarity, catalog):
    seed(catalog)
    results = asyncio.run(similarity.find_similar_to_product("src", SearchOptions(threshold=0.5, count=3)))
    ids = [r.product_id for r in results]
    assert "src" not in ids
    assert ids == ["a", "b", "c"]


def test_find_similar_to_product_refetches_on_shortfall(embedding_client, catalog, profiles):
    # identical duplicates of the source push it past the margin
    catalog.add("dup1", [1.0, 0.0, 0.0, 0.0])
    catalog.add("src", [1.0, 0.0, 0.0, 0.0])
    catalog.add("a", [0.9, 0.1, 0.0, 0.0])
    catalog.add("b", [0.8, 0.2, 0.0, 0.0])
    svc = SimilaritySearchService(embedding_client, catalog, catalog, profiles, self_match_margin=0)

    results = asyncio.run(svc.find_similar_to_product("src", SearchOptions(threshold=0.5, count=2)))

    assert "src" not in [r.product_id for r in results]
    assert len(results) == 2
    assert [c["count"] for c in catalog.search_calls] == [2, 4]


def test_find_similar_to_product_without_embedding_is_empty(similarity, catalog):
    catalog.add("bare")
    assert asyncio.run(similarity.find_similar_to_product("bare")) == []


def test_find_similar_passes_filters(similarity, catalog):
    seed(catalog)
    opts = SearchOptions(threshold=0.0, count=10, category="Books", price_min=15, price_max=100, search_effort=80)
    results = asyncio.run(similarity.find_similar([1.0, 0.0, 0.0, 0.0], opts))
    assert {r.product_id for r in results} == {"src", "a"}
    assert catalog.search_calls[-1]["search_effort"] == 80


@pytest.mark.parametrize("bad", [[1.0, 0.0], [1.0, float("nan"), 0.0, 0.0], "1,2,3,4"])
def test_invalid_query_vector_is_rejected_before_search(similarity, catalog, bad):
    with pytest.raises(InvalidEmbedding):
        asyncio.run(similarity.find_similar(bad))
    with pytest.raises(InvalidEmbedding):
        asyncio.run(similarity.hybrid_search("q", bad))
    assert catalog.search_calls == []


def test_hybrid_search_by_text(similarity, catalog):
    seed(catalog)
    catalog.add("kw", [0.0, 1.0, 0.0, 0.0], title="wool scarf")
    results = asyncio.run(
        similarity.hybrid_search_by_text("Wool", HybridSearchOptions(keyword_weight=1.0, semantic_weight=0.0, count=1))
    )
    assert [r.product_id for r in results] == ["kw"]


def test_personalized_recommendations(similarity, catalog, profiles):
    seed(catalog)
    assert asyncio.run(similarity.personalized_recommendations("nobody")) == []

    asyncio.run(profiles.set_preference("u1", [0.0, 0.0, 0.0, 1.0]))
    results = asyncio.run(similarity.personalized_recommendations("u1", count=5))
    assert [r.product_id for r in results] == ["far"]


def test_cosine_helper(similarity):
    assert similarity.cosine_similarity([1, 0], [0, 1]) == 0.0
