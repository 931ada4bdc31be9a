import pytest

from giftvec.domain.repositories.product_search_repo import (
    build_hybrid_pipeline,
    build_vector_filter,
    build_vector_search_pipeline,
    default_num_candidates,
)

ACTIVE = {"is_active": {"$eq": True}}


def test_filter_without_options_is_active_only():
    assert build_vector_filter() == ACTIVE


@pytest.mark.parametrize(
    "kwargs, extra",
    [
        ({"category": "Books"}, [{"category": {"$eq": "Books"}}]),
        ({"price_min": 10}, [{"price": {"$gte": 10}}]),
        ({"price_max": 50}, [{"price": {"$lte": 50}}]),
        ({"price_min": 10, "price_max": 50}, [{"price": {"$gte": 10, "$lte": 50}}]),
        (
            {"category": "Books", "price_min": 10, "price_max": 50},
            [{"category": {"$eq": "Books"}}, {"price": {"$gte": 10, "$lte": 50}}],
        ),
        ({"category": "Books", "price_max": 0}, [{"category": {"$eq": "Books"}}, {"price": {"$lte": 0}}]),
    ],
)
def test_filter_variants(kwargs, extra):
    assert build_vector_filter(**kwargs) == {"$and": [ACTIVE, *extra]}


def test_vector_search_pipeline_stages():
    pipeline = build_vector_search_pipeline([0.1, 0.2], index="idx", threshold=0.7, count=5, category="Toys")
    stage = pipeline[0]["$vectorSearch"]
    assert stage["index"] == "idx"
    assert stage["path"] == "embedding.vector"
    assert stage["limit"] == 5
    assert stage["numCandidates"] == default_num_candidates(5) == 200
    assert stage["filter"] == {"$and": [ACTIVE, {"category": {"$eq": "Toys"}}]}
    assert pipeline[2] == {"$match": {"similarity": {"$gt": 0.7}}}


def test_search_effort_sets_num_candidates_but_never_below_limit():
    p = build_vector_search_pipeline([0.1], index="idx", threshold=0.0, count=10, search_effort=40)
    assert p[0]["$vectorSearch"]["numCandidates"] == 40
    p = build_vector_search_pipeline([0.1], index="idx", threshold=0.0, count=10, search_effort=5)
    assert p[0]["$vectorSearch"]["numCandidates"] == 10


def test_default_num_candidates_scales_with_count():
    assert default_num_candidates(50) == 500


def test_hybrid_pipeline_weights_and_limits():
    pipeline = build_hybrid_pipeline(
        "wool scarf",
        [0.1, 0.2],
        vector_index="vidx",
        text_index="tidx",
        collection="products",
        keyword_weight=0.3,
        semantic_weight=0.7,
        count=20,
    )
    assert pipeline[0]["$vectorSearch"]["limit"] == 40
    union = pipeline[3]["$unionWith"]
    assert union["coll"] == "products"
    assert union["pipeline"][0]["$search"]["index"] == "tidx"
    combined = pipeline[5]["$addFields"]["combined_score"]["$add"]
    assert combined == [
        {"$multiply": [0.3, "$keyword_score"]},
        {"$multiply": [0.7, "$semantic_score"]},
    ]
    assert {"$limit": 20} in pipeline
