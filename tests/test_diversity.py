from giftvec.domain.models.recommendation import RecommendationWithExplanation
from giftvec.domain.services.diversity import apply_mmr, proxy_similarity


def rec(pid, score, category="Books", price=20.0):
    return RecommendationWithExplanation(product_id=pid, title=pid, score=score, category=category, price=price)


def test_zero_factors_keep_relevance_order():
    candidates = [rec("a", 0.9), rec("b", 0.8), rec("c", 0.8), rec("d", 0.3, "Toys", 200)]
    out = apply_mmr(candidates, 0.0, 0.0, random_source=lambda: 0.99)
    assert [r.product_id for r in out] == ["a", "b", "c", "d"]


def test_top_candidate_always_first():
    candidates = [rec("a", 0.9), rec("b", 0.89), rec("c", 0.5, "Toys", 500)]
    out = apply_mmr(candidates, 0.9, 0.0, random_source=lambda: 0.0)
    assert out[0].product_id == "a"
    assert out[0].diversity_score == 1.0


def test_diversity_pressure_promotes_other_categories():
    candidates = [rec("a", 0.9), rec("b", 0.85), rec("c", 0.7, "Toys", 90)]
    out = apply_mmr(candidates, 0.6, 0.0, random_source=lambda: 0.0)
    assert [r.product_id for r in out] == ["a", "c", "b"]
    assert out[1].diversity_score > out[2].diversity_score


def test_limit_and_empty_input():
    assert apply_mmr([], 0.3, 0.1) == []
    out = apply_mmr([rec("a", 0.9), rec("b", 0.8), rec("c", 0.7)], 0.3, 0.0, limit=2, random_source=lambda: 0.0)
    assert len(out) == 2


def test_proxy_similarity():
    assert proxy_similarity(rec("a", 1, "Books", 10), rec("b", 1, "Books", 20)) == 0.5 + 0.5 * 0.3
    assert proxy_similarity(rec("a", 1, "Books", 0), rec("b", 1, "Toys", 0)) == 0.0
    assert proxy_similarity(rec("a", 1, None, 10), rec("b", 1, None, 10)) == 0.3
